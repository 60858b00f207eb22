# src/apps/common/exceptions.py
"""
Error taxonomy shared by every Quest Board service.

Services raise Django's own exceptions where one exists:
- ValidationError  -> django.core.exceptions.ValidationError({"field": "message"})
- PermissionDenied -> django.core.exceptions.PermissionDenied (SkillRequirementsNotMet for the skill gate)
- NotFound         -> subclass of ObjectDoesNotExist

and the two lifecycle errors Django has no equivalent for:
- InvalidTransition (current, requested)
- Conflict (lost a guarded update)

error_payload() turns any of them into the envelope callers show to users:
{"error": <category>, "message": <text>, "details": <structured>}.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

from django.core.exceptions import ObjectDoesNotExist, PermissionDenied, ValidationError


class QuestBoardError(Exception):
    """Base for errors that have no Django counterpart."""

    category = "error"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidTransition(QuestBoardError):
    """
    A status change the state machine does not allow.

    Used for quests (AVAILABLE -> CLAIMED ...) and store transactions (PENDING -> APPROVED ...).
    """

    category = "invalid_transition"

    def __init__(self, current: str, requested: str, *, message: Optional[str] = None) -> None:
        self.current = str(current)
        self.requested = str(requested)
        super().__init__(
            message or f"Cannot move from {self.current} to {self.requested}",
            details={"current": self.current, "requested": self.requested},
        )


class Conflict(QuestBoardError):
    """
    A guarded UPDATE matched no row: another request changed the row first.

    Never retried automatically; the caller reloads and decides.
    """

    category = "conflict"


class NotFound(ObjectDoesNotExist):
    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class SkillRequirementsNotMet(PermissionDenied):
    """
    Raised by claim() when the claimant fails the skill gate.

    missing_skills:      required skill ids the user has no UserSkill row for
    insufficient_skills: required skill ids where the user's level < min_level
    """

    def __init__(
        self,
        message: str,
        *,
        missing_skills: Iterable[int] = (),
        insufficient_skills: Iterable[int] = (),
    ) -> None:
        self.message = message
        self.missing_skills = list(missing_skills)
        self.insufficient_skills = list(insufficient_skills)
        super().__init__(message)


# -----------------------------
# Envelope
# -----------------------------
def error_category(exc: BaseException) -> str:
    if isinstance(exc, QuestBoardError):
        return exc.category
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, PermissionDenied):
        return "permission_denied"
    if isinstance(exc, ObjectDoesNotExist):
        return "not_found"
    return "internal_error"


def _validation_message(exc: ValidationError) -> tuple[str, Any]:
    if hasattr(exc, "error_dict"):
        details = exc.message_dict
        first = next(iter(details.values()), ["Invalid input"])
        return (first[0] if first else "Invalid input"), details
    return (exc.messages[0] if exc.messages else "Invalid input"), exc.messages


def error_payload(exc: BaseException) -> dict[str, Any]:
    """
    Convert a service error into {"error", "message", "details"}.

    Unknown exceptions collapse to a generic internal_error without leaking their text.
    """
    category = error_category(exc)

    if isinstance(exc, ValidationError):
        message, details = _validation_message(exc)
    elif isinstance(exc, SkillRequirementsNotMet):
        message = exc.message
        details = {
            "missing_skills": exc.missing_skills,
            "insufficient_skills": exc.insufficient_skills,
        }
    elif isinstance(exc, (QuestBoardError, NotFound)):
        message, details = exc.message, exc.details
    elif category == "internal_error":
        message, details = "Internal server error", {"type": type(exc).__name__}
    else:
        message, details = (str(exc) or category.replace("_", " ")), {}

    return {"error": category, "message": message, "details": details}
