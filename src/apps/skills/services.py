# src/apps/skills/services.py
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction

from apps.accounts.permissions import require_moderator
from apps.common.exceptions import NotFound
from apps.notifications.services import NotificationService

from .models import Skill, UserSkill

if TYPE_CHECKING:
    from apps.accounts.models import User

logger = logging.getLogger(__name__)


def validate_skill_level(level, *, field: str = "level") -> int:
    """1..QUEST_BOARD_SKILL_LEVEL_MAX, as int. Shared with quest requirements (min_level)."""
    max_level = settings.QUEST_BOARD_SKILL_LEVEL_MAX
    if isinstance(level, bool) or not isinstance(level, int) or not 1 <= level <= max_level:
        raise ValidationError({field: f"Level must be between 1 and {max_level}"})
    return level


class SkillService:
    """
    Skill catalogue and per-user skill levels.

    Rules:
    - every write here is admin/editor only
    - a skill still referenced by a quest requirement or a user cannot be deleted
    """

    def __init__(self) -> None:
        self.notification_service = NotificationService()

    # -----------------------------
    # Catalogue
    # -----------------------------
    def get_skill(self, skill_id: int) -> Skill:
        try:
            return Skill.objects.get(id=skill_id)
        except Skill.DoesNotExist:
            raise NotFound("Skill not found", details={"skill_id": skill_id})

    def list_skills(self, *, active_only: bool = True) -> list[Skill]:
        qs = Skill.objects.all()
        if active_only:
            qs = qs.filter(is_active=True)
        return list(qs.order_by("name"))

    @transaction.atomic
    def create_skill(self, *, actor: "User", name: str, description: str = "") -> Skill:
        require_moderator(actor, action="create skills")

        name = (name or "").strip()
        if not name:
            raise ValidationError({"name": "Skill name is required"})
        if Skill.objects.filter(name__iexact=name).exists():
            raise ValidationError({"name": "Skill with this name already exists"})

        skill = Skill.objects.create(
            name=name,
            description=(description or "").strip(),
            created_by=actor,
        )
        logger.info("skill.created id=%s name=%s by=%s", skill.id, skill.name, actor.id)
        return skill

    @transaction.atomic
    def update_skill(
        self,
        *,
        actor: "User",
        skill_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Skill:
        require_moderator(actor, action="update skills")
        skill = self.get_skill(skill_id)

        update_fields: list[str] = []
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError({"name": "Skill name is required"})
            if Skill.objects.filter(name__iexact=name).exclude(id=skill.id).exists():
                raise ValidationError({"name": "Skill with this name already exists"})
            skill.name = name
            update_fields.append("name")
        if description is not None:
            skill.description = description.strip()
            update_fields.append("description")
        if is_active is not None:
            skill.is_active = bool(is_active)
            update_fields.append("is_active")

        if update_fields:
            skill.save(update_fields=[*update_fields, "updated_at"])
        return skill

    @transaction.atomic
    def delete_skill(self, *, actor: "User", skill_id: int) -> None:
        require_moderator(actor, action="delete skills")
        skill = self.get_skill(skill_id)

        if skill.quest_requirements.exists():
            raise ValidationError({"skill": "Skill is required by one or more quests"})
        if skill.user_skills.exists():
            raise ValidationError({"skill": "Skill is assigned to one or more users"})

        skill.delete()
        logger.info("skill.deleted id=%s by=%s", skill_id, actor.id)

    # -----------------------------
    # User skills
    # -----------------------------
    def list_user_skills(self, *, user_id: int) -> list[UserSkill]:
        return list(
            UserSkill.objects.filter(user_id=user_id)
            .select_related("skill")
            .order_by("-level", "skill__name")
        )

    def get_user_skill_level(self, *, user_id: int, skill_id: int) -> int:
        """0 when the user has no row for the skill."""
        row = UserSkill.objects.filter(user_id=user_id, skill_id=skill_id).values_list("level", flat=True).first()
        return int(row or 0)

    @transaction.atomic
    def set_user_skill(self, *, actor: "User", user_id: int, skill_id: int, level: int) -> UserSkill:
        """
        Create or update the user's level in a skill.

        A raised level notifies the user (SKILL_LEVEL_UP).
        """
        require_moderator(actor, action="change user skill levels")
        level = validate_skill_level(level)

        User = get_user_model()
        try:
            user = User.objects.get(id=user_id)
        except User.DoesNotExist:
            raise NotFound("User not found", details={"user_id": user_id})
        skill = self.get_skill(skill_id)

        # row lock: two moderators editing the same user skill serialize here
        user_skill = UserSkill.objects.select_for_update().filter(user=user, skill=skill).first()
        old_level = user_skill.level if user_skill else 0

        if user_skill is None:
            try:
                with transaction.atomic():
                    user_skill = UserSkill.objects.create(user=user, skill=skill, level=level)
            except IntegrityError:
                # concurrent first assignment; fall back to updating the row that won
                user_skill = UserSkill.objects.select_for_update().get(user=user, skill=skill)
                old_level = user_skill.level
                user_skill.level = level
                user_skill.save(update_fields=["level", "updated_at"])
        elif user_skill.level != level:
            user_skill.level = level
            user_skill.save(update_fields=["level", "updated_at"])

        logger.info(
            "skill.user_level_set user=%s skill=%s %s->%s by=%s",
            user.id, skill.id, old_level, level, actor.id,
        )

        if level > old_level:
            self.notification_service.create_skill_level_up(
                user=user, skill_name=skill.name, old_level=old_level, new_level=level
            )
        return user_skill

    @transaction.atomic
    def remove_user_skill(self, *, actor: "User", user_id: int, skill_id: int) -> None:
        require_moderator(actor, action="remove user skills")
        deleted, _ = UserSkill.objects.filter(user_id=user_id, skill_id=skill_id).delete()
        if not deleted:
            raise NotFound("User skill not found", details={"user_id": user_id, "skill_id": skill_id})
        logger.info("skill.user_skill_removed user=%s skill=%s by=%s", user_id, skill_id, actor.id)
