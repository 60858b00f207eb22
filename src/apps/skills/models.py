# src/apps/skills/models.py
from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class Skill(models.Model):
    """
    A household skill (Cooking, Yard Work, ...).

    Quests can require a minimum level in it (quests.QuestRequiredSkill);
    users hold a level in it (UserSkill).
    """

    name = models.CharField(max_length=50, unique=True)
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_skills",
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "skills_skill"
        ordering = ("name",)

    def __str__(self) -> str:
        return self.name


class UserSkill(models.Model):
    """
    A user's proficiency in one skill.

    NOTE:
    - level is 1..QUEST_BOARD_SKILL_LEVEL_MAX; the upper bound is enforced by SkillService
    - only admins/editors change it (SkillService.set_user_skill)
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="user_skills",
    )
    skill = models.ForeignKey(
        Skill,
        on_delete=models.PROTECT,
        related_name="user_skills",
    )
    level = models.PositiveSmallIntegerField(default=1)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "skills_user_skill"
        constraints = [
            models.UniqueConstraint(fields=["user", "skill"], name="uq_user_skill_user_skill"),
            models.CheckConstraint(condition=Q(level__gte=1), name="ck_user_skill_level_positive"),
        ]
        indexes = [
            models.Index(fields=["user", "skill"]),
        ]

    def __str__(self) -> str:
        return f"UserSkill(user={self.user_id}, skill={self.skill_id}, level={self.level})"
