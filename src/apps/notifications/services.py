# src/apps/notifications/services.py
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from apps.accounts.models import MODERATOR_ROLES
from apps.common.exceptions import NotFound
from apps.common.pagination import Page, paginate

from .models import Notification, NotificationType

if TYPE_CHECKING:
    from apps.accounts.models import User

logger = logging.getLogger(__name__)


def _amount(value) -> str:
    """Decimal bounty -> "50" / "12.50" for messages."""
    value = Decimal(str(value))
    return f"{value:.0f}" if value == value.to_integral_value() else f"{value:.2f}"


class NotificationService:
    """
    Single entry point for notification rows.

    Rules:
    - other apps never create Notification directly; they call the create_* helpers
    - reads are always scoped to the owner; someone else's id behaves as not found
    """

    # -----------------------------
    # Feed
    # -----------------------------
    def list_for_user(
        self,
        *,
        user: "User",
        unread_only: bool = False,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page:
        qs = Notification.objects.filter(user=user)
        if unread_only:
            qs = qs.filter(is_read=False)
        return paginate(qs.order_by("-created_at", "-id"), page=page, limit=limit)

    def unread_count(self, *, user: "User") -> int:
        return Notification.objects.filter(user=user, is_read=False).count()

    # -----------------------------
    # Read state
    # -----------------------------
    @transaction.atomic
    def mark_read(self, *, notification_id: int, user: "User") -> Notification:
        """Idempotent: an already-read notification keeps its first read_at."""
        try:
            n = Notification.objects.select_for_update().get(id=notification_id, user=user)
        except Notification.DoesNotExist:
            raise NotFound("Notification not found", details={"notification_id": notification_id})

        if not n.is_read:
            n.is_read = True
            n.read_at = timezone.now()
            n.save(update_fields=["is_read", "read_at"])
        return n

    @transaction.atomic
    def mark_all_read(self, *, user: "User") -> int:
        """Returns the number of notifications that changed from unread to read."""
        return Notification.objects.filter(user=user, is_read=False).update(
            is_read=True, read_at=timezone.now()
        )

    @transaction.atomic
    def delete(self, *, notification_id: int, user: "User") -> None:
        deleted, _ = Notification.objects.filter(id=notification_id, user=user).delete()
        if not deleted:
            raise NotFound("Notification not found", details={"notification_id": notification_id})

    def delete_older_than(self, *, days: Optional[int] = None, now=None) -> int:
        days = settings.QUEST_BOARD_NOTIFICATION_RETENTION_DAYS if days is None else days
        cutoff = (now or timezone.now()) - timedelta(days=days)
        deleted, _ = Notification.objects.filter(created_at__lt=cutoff).delete()
        if deleted:
            logger.info("notifications.pruned count=%s older_than_days=%s", deleted, days)
        return deleted

    # -----------------------------
    # Create
    # -----------------------------
    def notify(
        self,
        *,
        user: "User",
        type: str,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> Notification:
        return Notification.objects.create(
            user=user,
            type=type,
            title=title,
            message=message,
            data=data,
        )

    def notify_moderators(
        self,
        *,
        type: str,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
        exclude_user_id: Optional[int] = None,
    ) -> int:
        moderators = get_user_model().objects.filter(role__in=MODERATOR_ROLES, is_active=True)
        if exclude_user_id is not None:
            moderators = moderators.exclude(id=exclude_user_id)

        rows = [
            Notification(user=m, type=type, title=title, message=message, data=data)
            for m in moderators
        ]
        Notification.objects.bulk_create(rows)
        return len(rows)

    # --- quests ---
    def create_quest_claimed(self, *, creator: "User", claimant: "User", quest) -> Notification:
        return self.notify(
            user=creator,
            type=NotificationType.QUEST_CLAIMED,
            title="Quest claimed",
            message=f'{claimant.display_name} claimed your quest "{quest.title}".',
            data={"quest_id": quest.id, "claimed_by": claimant.id},
        )

    def create_quest_completed(self, *, claimant: "User", quest) -> int:
        """Tell every moderator a completion is waiting for review."""
        return self.notify_moderators(
            type=NotificationType.ADMIN_APPROVAL_NEEDED,
            title="Quest awaiting approval",
            message=f'{claimant.display_name} completed "{quest.title}". Please review it.',
            data={"quest_id": quest.id, "claimed_by": claimant.id},
            exclude_user_id=claimant.id,
        )

    def create_quest_approved(self, *, user: "User", quest, bounty, experience: int) -> Notification:
        return self.notify(
            user=user,
            type=NotificationType.QUEST_APPROVED,
            title="Quest approved",
            message=(
                f'Your completion of "{quest.title}" was approved. '
                f"+{_amount(bounty)} bounty, +{experience} XP."
            ),
            data={"quest_id": quest.id, "bounty": str(bounty), "experience": experience},
        )

    def create_quest_rejected(self, *, user: "User", quest, reason: Optional[str]) -> Notification:
        message = f'Your completion of "{quest.title}" was rejected.'
        if reason:
            message = f"{message} Reason: {reason}"
        return self.notify(
            user=user,
            type=NotificationType.QUEST_REJECTED,
            title="Quest rejected",
            message=message,
            data={"quest_id": quest.id, "reason": reason or ""},
        )

    def create_quest_available(self, *, user: "User", quest) -> Notification:
        return self.notify(
            user=user,
            type=NotificationType.QUEST_AVAILABLE,
            title="Quest available again",
            message=f'"{quest.title}" can be claimed again.',
            data={"quest_id": quest.id},
        )

    # --- progression ---
    def create_level_up(self, *, user: "User", new_level: int) -> Notification:
        return self.notify(
            user=user,
            type=NotificationType.LEVEL_UP,
            title="Level up!",
            message=f"You reached level {new_level}.",
            data={"level": new_level},
        )

    def create_skill_level_up(self, *, user: "User", skill_name: str, old_level: int, new_level: int) -> Notification:
        return self.notify(
            user=user,
            type=NotificationType.SKILL_LEVEL_UP,
            title="Skill improved",
            message=f"Your {skill_name} skill went from level {old_level} to level {new_level}.",
            data={"skill": skill_name, "old_level": old_level, "new_level": new_level},
        )

    # --- store ---
    def create_store_purchase(self, *, seller: "User", buyer: "User", transaction_row) -> Notification:
        item = transaction_row.item
        return self.notify(
            user=seller,
            type=NotificationType.STORE_PURCHASE,
            title="New store purchase",
            message=f'{buyer.display_name} bought "{item.name}" for {_amount(transaction_row.amount)} bounty.',
            data={"transaction_id": transaction_row.id, "item_id": item.id},
        )

    def create_store_processed(self, *, buyer: "User", transaction_row, approved: bool) -> Notification:
        item = transaction_row.item
        if approved:
            type_, title = NotificationType.STORE_APPROVED, "Purchase approved"
            message = f'Your purchase of "{item.name}" was approved.'
        else:
            type_, title = NotificationType.STORE_REJECTED, "Purchase rejected"
            message = (
                f'Your purchase of "{item.name}" was rejected. '
                f"{_amount(transaction_row.amount)} bounty was refunded."
            )
        if transaction_row.notes:
            message = f"{message} Notes: {transaction_row.notes}"
        return self.notify(
            user=buyer,
            type=type_,
            title=title,
            message=message,
            data={"transaction_id": transaction_row.id, "item_id": item.id},
        )
