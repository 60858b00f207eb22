# src/apps/quests/models.py
from __future__ import annotations

from datetime import timedelta

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class QuestStatus(models.TextChoices):
    AVAILABLE = "AVAILABLE", "Available"
    CLAIMED = "CLAIMED", "Claimed"
    COMPLETED = "COMPLETED", "Completed (awaiting approval)"
    APPROVED = "APPROVED", "Approved"
    REJECTED = "REJECTED", "Rejected"
    COOLDOWN = "COOLDOWN", "Cooldown"


class Quest(models.Model):
    """
    A chore with a bounty.

    Invariants (kept by QuestService, partly backed by constraints):
    - claimed_by / claimed_at are set together and cleared together
    - completed_at is only set when leaving CLAIMED
    - cooldown_days is set iff is_repeatable
    - status is only changed by guarded UPDATEs in apps.quests.lifecycle
    """

    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)

    bounty = models.DecimalField(max_digits=10, decimal_places=2)

    status = models.CharField(
        max_length=10,
        choices=QuestStatus.choices,
        default=QuestStatus.AVAILABLE,
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="created_quests",
    )
    claimed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="claimed_quests",
    )

    claimed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    last_completed_at = models.DateTimeField(null=True, blank=True)

    is_repeatable = models.BooleanField(default=False)
    cooldown_days = models.PositiveIntegerField(null=True, blank=True)

    # shown to the claimant after a rejection; cleared when the quest is reopened
    rejection_reason = models.TextField(blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "quests_quest"
        indexes = [
            models.Index(fields=["status"]),
            models.Index(fields=["created_by", "status"]),
            models.Index(fields=["claimed_by", "status"]),
            models.Index(fields=["is_repeatable", "status"]),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(bounty__gt=0), name="ck_quest_bounty_positive"),
            models.CheckConstraint(
                condition=(
                    Q(claimed_by__isnull=True, claimed_at__isnull=True)
                    | Q(claimed_by__isnull=False, claimed_at__isnull=False)
                ),
                name="ck_quest_claim_fields_together",
            ),
        ]

    def __str__(self) -> str:
        return f"Quest({self.id}): {self.title} [{self.status}]"

    @property
    def cooldown_ends_at(self):
        """When a COOLDOWN quest becomes claimable again (None if not applicable)."""
        if not self.is_repeatable or not self.cooldown_days or self.last_completed_at is None:
            return None
        return self.last_completed_at + timedelta(days=self.cooldown_days)

    def is_cooldown_elapsed(self, now=None) -> bool:
        ends_at = self.cooldown_ends_at
        if self.status != QuestStatus.COOLDOWN or ends_at is None:
            return False
        return (now or timezone.now()) >= ends_at


class QuestRequiredSkill(models.Model):
    """
    Minimum skill level needed to claim a quest (skill gate).

    min_level is 1..QUEST_BOARD_SKILL_LEVEL_MAX; >= 1 is also a DB constraint.
    """

    quest = models.ForeignKey(
        Quest,
        on_delete=models.CASCADE,
        related_name="required_skills",
    )
    skill = models.ForeignKey(
        "skills.Skill",
        on_delete=models.PROTECT,
        related_name="quest_requirements",
    )
    min_level = models.PositiveSmallIntegerField(default=1)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "quests_required_skill"
        constraints = [
            models.UniqueConstraint(fields=["quest", "skill"], name="uq_required_skill_quest_skill"),
            models.CheckConstraint(condition=Q(min_level__gte=1), name="ck_required_skill_min_level"),
        ]

    def __str__(self) -> str:
        return f"QuestRequiredSkill(quest={self.quest_id}, skill={self.skill_id}, min={self.min_level})"


class CompletionStatus(models.TextChoices):
    APPROVED = "APPROVED", "Approved"
    REJECTED = "REJECTED", "Rejected"


class QuestCompletion(models.Model):
    """
    One review decision on one completion (append-only).

    NOTE:
    - repeatable quests produce one row per cycle, so leaderboards and history read
      from here instead of Quest (which only remembers the latest cycle)
    - bounty / experience are snapshots of what was actually credited (0 on rejection)
    """

    quest = models.ForeignKey(
        Quest,
        on_delete=models.CASCADE,
        related_name="completions",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="quest_completions",
    )
    status = models.CharField(max_length=10, choices=CompletionStatus.choices)

    bounty = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    experience = models.PositiveIntegerField(default=0)

    completed_at = models.DateTimeField()
    reviewed_at = models.DateTimeField(default=timezone.now)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reviewed_completions",
    )
    notes = models.TextField(blank=True)

    class Meta:
        db_table = "quests_completion"
        indexes = [
            models.Index(fields=["user", "completed_at"]),
            models.Index(fields=["status", "completed_at"]),
        ]

    def __str__(self) -> str:
        return f"Completion(quest={self.quest_id}, user={self.user_id}, {self.status})"
