# src/apps/accounts/permissions.py
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.core.exceptions import PermissionDenied

from .models import MODERATOR_ROLES, UserRole

if TYPE_CHECKING:
    from .models import User

logger = logging.getLogger(__name__)


def is_moderator(user: "User") -> bool:
    """ADMIN or EDITOR."""
    return bool(user) and getattr(user, "role", None) in MODERATOR_ROLES


def require_moderator(user: "User", *, action: str = "perform this action") -> None:
    if not is_moderator(user):
        logger.warning("permission.denied user=%s role=%s action=%s", getattr(user, "pk", None), getattr(user, "role", None), action)
        raise PermissionDenied(f"Only admins or editors can {action}")


def require_admin(user: "User", *, action: str = "perform this action") -> None:
    if getattr(user, "role", None) != UserRole.ADMIN:
        logger.warning("permission.denied user=%s role=%s action=%s", getattr(user, "pk", None), getattr(user, "role", None), action)
        raise PermissionDenied(f"Only admins can {action}")
