# src/apps/dashboard/services.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db.models import Count, Sum

from apps.accounts.permissions import require_moderator
from apps.common.periods import month_bounds
from apps.quests.models import CompletionStatus, Quest, QuestCompletion, QuestStatus
from apps.rewards.leveling import LevelInfo

if TYPE_CHECKING:
    from apps.accounts.models import User


OPEN_STATUSES = (QuestStatus.AVAILABLE, QuestStatus.CLAIMED, QuestStatus.COMPLETED)


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: int
    display_name: str
    total: Any  # Decimal for bounty boards, int for quest counts


@dataclass(frozen=True)
class UserDashboard:
    level: LevelInfo
    bounty_balance: Decimal
    completed_count: int
    claimed_count: int
    created_count: int
    current_quests: list[Quest]
    recent_created: list[Quest]


@dataclass(frozen=True)
class AdminSummary:
    status_counts: dict[str, int]
    user_count: int
    open_bounty: Decimal
    pending_approvals: list[Quest]


class DashboardService:
    """
    Read-only views over quests and completions.

    Monthly boards count APPROVED QuestCompletion rows (one per approved cycle),
    so repeatable quests score every time they are approved.
    """

    def _leaderboard_size(self) -> int:
        return getattr(settings, "QUEST_BOARD_LEADERBOARD_SIZE", 5)

    def _leaderboard(self, *, month: str, aggregate, zero) -> list[LeaderboardEntry]:
        start, end = month_bounds(month)
        size = self._leaderboard_size()

        rows = (
            QuestCompletion.objects.filter(
                status=CompletionStatus.APPROVED,
                completed_at__gte=start,
                completed_at__lt=end,
            )
            .values("user_id", "user__display_name")
            .annotate(total=aggregate)
            .order_by("-total", "user__display_name", "user_id")[:size]
        )
        board = [(r["user_id"], r["user__display_name"], r["total"]) for r in rows]

        # pad with zero scores so the board always shows `size` people when it can
        if len(board) < size:
            seen = [user_id for user_id, _, _ in board]
            fillers = (
                get_user_model()
                .objects.filter(is_active=True)
                .exclude(id__in=seen)
                .order_by("display_name", "id")
                .values_list("id", "display_name")[: size - len(board)]
            )
            board += [(user_id, name, zero) for user_id, name in fillers]

        return [
            LeaderboardEntry(rank=i, user_id=user_id, display_name=name, total=total)
            for i, (user_id, name, total) in enumerate(board, start=1)
        ]

    def bounty_leaderboard(self, *, month: str) -> list[LeaderboardEntry]:
        """Top earners for "YYYY-MM" by approved bounty."""
        return self._leaderboard(month=month, aggregate=Sum("bounty"), zero=Decimal("0"))

    def quest_leaderboard(self, *, month: str) -> list[LeaderboardEntry]:
        """Top questers for "YYYY-MM" by number of approved completions."""
        return self._leaderboard(month=month, aggregate=Count("id"), zero=0)

    def user_dashboard(self, *, user: "User", limit: int = 5) -> UserDashboard:
        user.refresh_from_db(fields=["bounty_balance", "experience"])

        current = (
            Quest.objects.filter(claimed_by=user, status__in=[QuestStatus.CLAIMED, QuestStatus.COMPLETED])
            .order_by("-claimed_at", "-id")
        )
        created = Quest.objects.filter(created_by=user).order_by("-created_at", "-id")

        return UserDashboard(
            level=user.level_info,
            bounty_balance=user.bounty_balance,
            completed_count=QuestCompletion.objects.filter(user=user, status=CompletionStatus.APPROVED).count(),
            claimed_count=Quest.objects.filter(claimed_by=user, status=QuestStatus.CLAIMED).count(),
            created_count=created.count(),
            current_quests=list(current[:limit]),
            recent_created=list(created[:limit]),
        )

    def admin_summary(self, *, actor: "User", pending_limit: int = 10) -> AdminSummary:
        require_moderator(actor, action="view the admin summary")

        counts = {status: 0 for status in QuestStatus.values}
        for row in Quest.objects.values("status").annotate(n=Count("id")):
            counts[row["status"]] = row["n"]

        open_bounty = (
            Quest.objects.filter(status__in=OPEN_STATUSES).aggregate(total=Sum("bounty"))["total"] or Decimal("0")
        )
        pending = (
            Quest.objects.filter(status=QuestStatus.COMPLETED)
            .select_related("claimed_by")
            .order_by("-completed_at", "-id")[:pending_limit]
        )

        return AdminSummary(
            status_counts=counts,
            user_count=get_user_model().objects.filter(is_active=True).count(),
            open_bounty=open_bounty,
            pending_approvals=list(pending),
        )
