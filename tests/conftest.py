"""
Shared fixtures for the Quest Board test suite.

- users in each role (admin / editor / player)
- factories for skills, quests and store items
- service instances

Every test that touches the database asks for `db` (via the fixtures below)
or is marked with pytest.mark.django_db.
"""

from __future__ import annotations

from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from itertools import count

import pytest

from apps.accounts.models import User, UserRole
from apps.dashboard.services import DashboardService
from apps.notifications.services import NotificationService
from apps.quests.models import Quest, QuestRequiredSkill, QuestStatus
from apps.quests.services import QuestService
from apps.rewards.services import RewardLedger, RewardsService
from apps.skills.models import Skill, UserSkill
from apps.skills.services import SkillService
from apps.store.models import StoreItem
from apps.store.services import StoreService

_seq = count(1)


# ============================================================================
# CLOCK
# ============================================================================


@pytest.fixture
def now() -> datetime:
    """A fixed instant; lifecycle calls take `now=` so tests never sleep."""
    return datetime(2026, 3, 10, 12, 0, tzinfo=dt_timezone.utc)


# ============================================================================
# USERS
# ============================================================================


@pytest.fixture
def make_user(db):
    def _make(*, role: str = UserRole.PLAYER, display_name: str | None = None, **extra) -> User:
        n = next(_seq)
        return User.objects.create_user(
            email=extra.pop("email", f"user{n}@example.com"),
            display_name=display_name or f"User {n}",
            role=role,
            **extra,
        )

    return _make


@pytest.fixture
def admin(make_user) -> User:
    return make_user(role=UserRole.ADMIN, display_name="Admin")


@pytest.fixture
def editor(make_user) -> User:
    return make_user(role=UserRole.EDITOR, display_name="Editor")


@pytest.fixture
def player(make_user) -> User:
    return make_user(display_name="Player")


@pytest.fixture
def other_player(make_user) -> User:
    return make_user(display_name="Other Player")


# ============================================================================
# DOMAIN FACTORIES
# ============================================================================


@pytest.fixture
def make_skill(db, admin):
    def _make(name: str | None = None, **extra) -> Skill:
        return Skill.objects.create(name=name or f"Skill {next(_seq)}", created_by=admin, **extra)

    return _make


@pytest.fixture
def give_skill(db):
    def _give(user: User, skill: Skill, level: int) -> UserSkill:
        return UserSkill.objects.create(user=user, skill=skill, level=level)

    return _give


@pytest.fixture
def make_quest(db, admin):
    """
    Creates rows directly (no service), so a test can start from any status.

    requirements: [(skill, min_level), ...]
    """

    def _make(
        *,
        title: str | None = None,
        bounty="10.00",
        status: str = QuestStatus.AVAILABLE,
        created_by: User | None = None,
        requirements=(),
        **extra,
    ) -> Quest:
        quest = Quest.objects.create(
            title=title or f"Quest {next(_seq)}",
            bounty=Decimal(str(bounty)),
            status=status,
            created_by=created_by or admin,
            **extra,
        )
        for skill, min_level in requirements:
            QuestRequiredSkill.objects.create(quest=quest, skill=skill, min_level=min_level)
        return quest

    return _make


@pytest.fixture
def make_item(db, editor):
    def _make(*, name: str | None = None, cost="25.00", seller: User | None = None, **extra) -> StoreItem:
        return StoreItem.objects.create(
            name=name or f"Item {next(_seq)}",
            cost=Decimal(str(cost)),
            created_by=seller or editor,
            **extra,
        )

    return _make


@pytest.fixture
def fund(db):
    """Set a user's balance directly (test setup only; services go through RewardLedger)."""

    def _fund(user: User, amount) -> User:
        User.objects.filter(pk=user.pk).update(bounty_balance=Decimal(str(amount)))
        user.refresh_from_db()
        return user

    return _fund


# ============================================================================
# SERVICES
# ============================================================================


@pytest.fixture
def quest_service() -> QuestService:
    return QuestService()


@pytest.fixture
def skill_service() -> SkillService:
    return SkillService()


@pytest.fixture
def store_service() -> StoreService:
    return StoreService()


@pytest.fixture
def notification_service() -> NotificationService:
    return NotificationService()


@pytest.fixture
def rewards_service() -> RewardsService:
    return RewardsService()


@pytest.fixture
def ledger() -> RewardLedger:
    return RewardLedger()


@pytest.fixture
def dashboard_service() -> DashboardService:
    return DashboardService()
