# src/apps/quests/lifecycle.py
"""
Quest status machine.

    AVAILABLE --claim--> CLAIMED --complete--> COMPLETED --approve--> APPROVED
                                                    |        (repeatable) --> COOLDOWN
                                                    +--reject--> REJECTED
    COOLDOWN --cooldown elapsed / reset--> AVAILABLE
    REJECTED --reset--> AVAILABLE

Every status change goes through guarded_update(): one UPDATE ... WHERE status = <expected>.
If another request moved the row first the UPDATE matches nothing and Conflict is raised,
so a quest can never be claimed twice or credited twice.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from django.utils import timezone

from apps.common.exceptions import Conflict, InvalidTransition

from .models import Quest, QuestStatus

logger = logging.getLogger(__name__)

S = QuestStatus

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    S.AVAILABLE: frozenset({S.CLAIMED}),
    S.CLAIMED: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset({S.APPROVED, S.REJECTED, S.COOLDOWN}),
    S.COOLDOWN: frozenset({S.AVAILABLE}),
    S.REJECTED: frozenset({S.AVAILABLE}),
    S.APPROVED: frozenset(),
}

# cleared whenever a quest goes back to AVAILABLE / COOLDOWN
CLEARED_CLAIM_FIELDS: dict[str, Any] = {
    "claimed_by": None,
    "claimed_at": None,
    "completed_at": None,
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def assert_transition(current: str, requested: str) -> None:
    if not can_transition(current, requested):
        raise InvalidTransition(current, requested)


def guarded_update(
    quest_id: int,
    *,
    expected: str,
    target: str,
    filters: Optional[dict[str, Any]] = None,
    now=None,
    **fields: Any,
) -> None:
    """
    UPDATE quest SET status=target, **fields WHERE id=quest_id AND status=expected [AND filters].

    Raises InvalidTransition for a move the table does not allow and Conflict when no row
    matched (the quest changed since it was read).
    """
    assert_transition(expected, target)

    rows = (
        Quest.objects.filter(pk=quest_id, status=expected, **(filters or {}))
        .update(status=target, updated_at=now or timezone.now(), **fields)
    )
    if rows != 1:
        logger.warning("quest.transition.conflict quest=%s expected=%s target=%s", quest_id, expected, target)
        raise Conflict(
            "Quest was changed by another request; reload and try again",
            details={"quest_id": quest_id, "expected": str(expected), "requested": str(target)},
        )
    logger.info("quest.transition quest=%s %s->%s", quest_id, expected, target)


def refresh_cooldown(quest: Quest, *, now=None) -> Quest:
    """
    Lazily end an elapsed cooldown (COOLDOWN -> AVAILABLE once now >= last_completed_at + cooldown_days).

    Losing the race to another reader is fine here: both want the same outcome,
    so the quest is just reloaded.
    """
    now = now or timezone.now()
    if not quest.is_cooldown_elapsed(now):
        return quest

    rows = (
        Quest.objects.filter(pk=quest.pk, status=S.COOLDOWN)
        .update(status=S.AVAILABLE, updated_at=now, **CLEARED_CLAIM_FIELDS)
    )
    if rows:
        logger.info("quest.cooldown_elapsed quest=%s", quest.pk)
    quest.refresh_from_db()
    return quest


def release_elapsed_cooldowns(*, now=None) -> int:
    """Run refresh_cooldown over every COOLDOWN quest; returns how many became AVAILABLE."""
    now = now or timezone.now()
    released = 0
    for quest in Quest.objects.filter(status=S.COOLDOWN, is_repeatable=True):
        if quest.is_cooldown_elapsed(now):
            if refresh_cooldown(quest, now=now).status == S.AVAILABLE:
                released += 1
    return released
