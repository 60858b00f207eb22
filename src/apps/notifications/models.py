# src/apps/notifications/models.py
from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone


class NotificationType(models.TextChoices):
    QUEST_APPROVED = "QUEST_APPROVED", "Quest approved"
    QUEST_REJECTED = "QUEST_REJECTED", "Quest rejected"
    QUEST_CLAIMED = "QUEST_CLAIMED", "Quest claimed"
    QUEST_COMPLETED = "QUEST_COMPLETED", "Quest completed"
    QUEST_AVAILABLE = "QUEST_AVAILABLE", "Quest available"
    LEVEL_UP = "LEVEL_UP", "Level up"
    SKILL_LEVEL_UP = "SKILL_LEVEL_UP", "Skill level up"
    STORE_PURCHASE = "STORE_PURCHASE", "Store purchase"
    STORE_APPROVED = "STORE_APPROVED", "Store purchase approved"
    STORE_REJECTED = "STORE_REJECTED", "Store purchase rejected"
    ADMIN_APPROVAL_NEEDED = "ADMIN_APPROVAL_NEEDED", "Approval needed"
    SYSTEM_MESSAGE = "SYSTEM_MESSAGE", "System"


class Notification(models.Model):
    """
    In-app notification addressed to one user.

    NOTE:
    - data holds ids the frontend links to (quest_id, transaction_id, ...)
    - list queries order by -created_at
    - push delivery is not handled here; the row is the notification
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )

    type = models.CharField(max_length=30, choices=NotificationType.choices)

    title = models.CharField(max_length=120)
    message = models.TextField()
    data = models.JSONField(null=True, blank=True)

    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "notifications_notification"
        indexes = [
            models.Index(fields=["user", "is_read"]),
            models.Index(fields=["user", "created_at"]),
            models.Index(fields=["type"]),
        ]

    def __str__(self) -> str:
        return f"Notification(user={self.user_id}, type={self.type})"
