# src/apps/accounts/services.py
from __future__ import annotations

import logging
from typing import Optional

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Q

from apps.common.exceptions import NotFound
from apps.common.pagination import Page, paginate

from .models import User, UserRole
from .permissions import require_admin

logger = logging.getLogger(__name__)

# Fields a user may edit on their own profile. Role / balance / experience are not among them.
PROFILE_FIELDS = (
    "display_name",
    "email",
    "character_name",
    "character_class",
    "character_bio",
    "avatar_url",
    "preferred_pronouns",
    "favorite_color",
)


class AccountService:
    """
    Account reads and the few writes that are not part of the reward ledger.

    Rules:
    - bounty_balance / experience are never written here (RewardLedger owns them)
    - role changes are ADMIN only
    """

    def get_user(self, user_id: int) -> User:
        try:
            return get_user_model().objects.get(id=user_id)
        except get_user_model().DoesNotExist:
            raise NotFound("User not found", details={"user_id": user_id})

    def list_users(self, *, search: Optional[str] = None, page: int = 1, limit: Optional[int] = None) -> Page:
        qs = get_user_model().objects.filter(is_active=True)
        if search:
            qs = qs.filter(Q(display_name__icontains=search) | Q(email__icontains=search))
        return paginate(qs.order_by("display_name", "id"), page=page, limit=limit)

    # -----------------------------
    # Profile
    # -----------------------------
    @transaction.atomic
    def update_profile(self, *, user: User, **fields) -> User:
        """
        Update profile fields of `user`.

        - unknown keys -> ValidationError (a typo must not be silently ignored)
        - strings are trimmed
        - display_name: required, <= 30 chars
        - email: lower-cased, unique
        """
        unknown = sorted(set(fields) - set(PROFILE_FIELDS))
        if unknown:
            raise ValidationError({"fields": f"Not editable: {', '.join(unknown)}"})

        cleaned = {k: (v.strip() if isinstance(v, str) else v) for k, v in fields.items()}

        if "display_name" in cleaned:
            name = cleaned["display_name"] or ""
            if not name:
                raise ValidationError({"display_name": "Display name is required"})
            if len(name) > 30:
                raise ValidationError({"display_name": "Display name must be at most 30 characters"})

        if "email" in cleaned:
            email = (cleaned["email"] or "").lower()
            if not email:
                raise ValidationError({"email": "Email is required"})
            if get_user_model().objects.filter(email=email).exclude(id=user.id).exists():
                raise ValidationError({"email": "Email is already in use"})
            cleaned["email"] = email

        for key, value in cleaned.items():
            setattr(user, key, value if value is not None else "")

        if cleaned:
            user.save(update_fields=[*cleaned.keys(), "updated_at"])
        return user

    # -----------------------------
    # Roles
    # -----------------------------
    @transaction.atomic
    def set_role(self, *, actor: User, user_id: int, role: str) -> User:
        require_admin(actor, action="change user roles")

        if role not in UserRole.values:
            raise ValidationError({"role": f"Role must be one of {', '.join(UserRole.values)}"})

        target = self.get_user(user_id)
        if target.id == actor.id and role != UserRole.ADMIN:
            raise ValidationError({"role": "Admins cannot demote themselves"})

        if target.role != role:
            before = target.role
            target.role = role
            target.save(update_fields=["role", "updated_at"])
            logger.info("account.role_changed user=%s %s->%s by=%s", target.id, before, role, actor.id)
        return target
