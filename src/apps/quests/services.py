# src/apps/quests/services.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional

from django.contrib.auth import get_user_model
from django.core.exceptions import PermissionDenied, ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from apps.accounts.permissions import require_admin, require_moderator
from apps.common.exceptions import InvalidTransition, NotFound, SkillRequirementsNotMet
from apps.common.pagination import Page, paginate
from apps.notifications.services import NotificationService
from apps.rewards.leveling import calculate_quest_experience
from apps.rewards.services import RewardLedger, to_amount
from apps.skills.gate import EligibilityResult, check_eligibility
from apps.skills.models import Skill
from apps.skills.services import validate_skill_level

from .lifecycle import CLEARED_CLAIM_FIELDS, guarded_update, refresh_cooldown, release_elapsed_cooldowns
from .models import CompletionStatus, Quest, QuestCompletion, QuestRequiredSkill, QuestStatus

if TYPE_CHECKING:
    from apps.accounts.models import User

logger = logging.getLogger(__name__)

# DecimalField(max_digits=10, decimal_places=2)
MAX_BOUNTY = Decimal("99999999.99")

_CLAIM_REFUSALS = {
    QuestStatus.CLAIMED: "Quest is already claimed",
    QuestStatus.COMPLETED: "Quest is already completed",
    QuestStatus.APPROVED: "Quest is already approved",
    QuestStatus.COOLDOWN: "Quest is on cooldown",
    QuestStatus.REJECTED: "Quest was rejected and must be reopened first",
}


# ============================================================
# - every status change goes through lifecycle.guarded_update
# - the reward credit runs in the same transaction, after the guard succeeded
# - reads refresh elapsed cooldowns first, so COOLDOWN -> AVAILABLE needs no scheduler
# ============================================================


@dataclass(frozen=True)
class ApprovalResult:
    quest: Quest
    completion: QuestCompletion
    bounty_awarded: Decimal
    experience_gained: int
    leveled_up: bool
    new_level: Optional[int]  # only set when leveled_up


@dataclass(frozen=True)
class SkillRequirement:
    skill_id: int
    min_level: int


class QuestService:
    """
    Quest authoring, listing and the claim / complete / approve / reject / reset lifecycle.

    NOTE:
    - Several household members open the board at the same time, so two of them pressing
      "claim" on the same quest is the normal case, not an edge case. Status checks done in
      Python are only for friendly error messages; the real decision is the guarded UPDATE.
    - Refusals are logged as warnings (quest.<op>.refused) so a moderator can later see
      who tried what; accepted transitions are logged by lifecycle.guarded_update.
    - Approval is the only place money and experience are created. Keep it that way:
      other apps move balances through RewardLedger, never by saving User directly.
    """

    def __init__(self) -> None:
        self.notification_service = NotificationService()
        self.ledger = RewardLedger()

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------
    def _get(self, quest_id: int) -> Quest:
        try:
            return Quest.objects.select_related("created_by", "claimed_by").get(id=quest_id)
        except Quest.DoesNotExist:
            logger.warning("quest.not_found quest=%s", quest_id)
            raise NotFound("Quest not found", details={"quest_id": quest_id})

    def get_quest(self, quest_id: int, *, now=None) -> Quest:
        return refresh_cooldown(self._get(quest_id), now=now)

    def check_eligibility(self, *, user: "User", quest_id: int) -> EligibilityResult:
        """UI pre-check; claim() runs the same gate again server-side."""
        return check_eligibility(user, self._get(quest_id))

    def list_quests(
        self,
        *,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        now=None,
    ) -> Page:
        """
        status: one status or a comma-separated list ("AVAILABLE,COOLDOWN")
        search: case-insensitive match on title or description
        """
        release_elapsed_cooldowns(now=now)
        qs = self._filtered(Quest.objects.all(), status=status, search=search)
        return paginate(qs, page=page, limit=limit)

    def list_created_by(self, *, user: "User", status=None, search=None, page: int = 1, limit=None, now=None) -> Page:
        release_elapsed_cooldowns(now=now)
        qs = self._filtered(Quest.objects.filter(created_by=user), status=status, search=search)
        return paginate(qs, page=page, limit=limit)

    def list_claimed_by(self, *, user: "User", status=None, search=None, page: int = 1, limit=None) -> Page:
        qs = self._filtered(Quest.objects.filter(claimed_by=user), status=status, search=search)
        return paginate(qs, page=page, limit=limit)

    def list_repeatable(self, *, page: int = 1, limit=None, now=None) -> Page:
        """Repeatable quests that are AVAILABLE or still cooling down (see Quest.cooldown_ends_at)."""
        release_elapsed_cooldowns(now=now)
        qs = Quest.objects.filter(
            is_repeatable=True,
            status__in=[QuestStatus.AVAILABLE, QuestStatus.COOLDOWN],
        ).select_related("created_by")
        return paginate(qs.order_by("-created_at", "-id"), page=page, limit=limit)

    def list_pending_approval(self, *, actor: "User", page: int = 1, limit=None) -> Page:
        require_moderator(actor, action="review pending quests")
        qs = (
            Quest.objects.filter(status=QuestStatus.COMPLETED)
            .select_related("created_by", "claimed_by")
            .order_by("-completed_at", "-id")
        )
        return paginate(qs, page=page, limit=limit)

    def completion_history(self, *, user: "User", page: int = 1, limit=None) -> Page:
        qs = (
            QuestCompletion.objects.filter(user=user)
            .select_related("quest", "reviewed_by")
            .order_by("-reviewed_at", "-id")
        )
        return paginate(qs, page=page, limit=limit)

    def _filtered(self, qs, *, status: Optional[str], search: Optional[str]):
        if status:
            statuses = [s.strip().upper() for s in status.split(",") if s.strip()]
            unknown = [s for s in statuses if s not in QuestStatus.values]
            if unknown:
                raise ValidationError({"status": f"Unknown status: {', '.join(unknown)}"})
            qs = qs.filter(status__in=statuses)
        if search:
            qs = qs.filter(Q(title__icontains=search) | Q(description__icontains=search))
        return qs.select_related("created_by", "claimed_by").order_by("-created_at", "-id")

    # ------------------------------------------------------------
    # Authoring (admin / editor)
    # ------------------------------------------------------------
    @transaction.atomic
    def create_quest(
        self,
        *,
        actor: "User",
        title: str,
        bounty,
        description: str = "",
        is_repeatable: bool = False,
        cooldown_days: Optional[int] = None,
        skill_requirements: Iterable[Mapping[str, Any]] = (),
    ) -> Quest:
        """
        skill_requirements: [{"skill_id": 1, "min_level": 3}, ...]
        cooldown_days is required (> 0) for repeatable quests and ignored otherwise.
        """
        require_moderator(actor, action="create quests")

        title = self._clean_title(title)
        bounty = self._clean_bounty(bounty)
        is_repeatable = bool(is_repeatable)
        cooldown_days = self._clean_cooldown(is_repeatable, cooldown_days)
        requirements = self._clean_requirements(skill_requirements)

        quest = Quest.objects.create(
            title=title,
            description=(description or "").strip(),
            bounty=bounty,
            status=QuestStatus.AVAILABLE,
            created_by=actor,
            is_repeatable=is_repeatable,
            cooldown_days=cooldown_days,
        )
        QuestRequiredSkill.objects.bulk_create(
            [QuestRequiredSkill(quest=quest, skill_id=r.skill_id, min_level=r.min_level) for r in requirements]
        )

        logger.info(
            "quest.created id=%s bounty=%s repeatable=%s requirements=%s by=%s",
            quest.id, bounty, is_repeatable, len(requirements), actor.id,
        )
        return quest

    @transaction.atomic
    def update_quest(
        self,
        *,
        actor: "User",
        quest_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        bounty=None,
        is_repeatable: Optional[bool] = None,
        cooldown_days: Optional[int] = None,
        skill_requirements: Optional[Iterable[Mapping[str, Any]]] = None,
        now=None,
    ) -> Quest:
        """
        Edit quest content. Status is never edited here.

        skill_requirements=None leaves requirements alone; a list replaces them all.
        A quest cooling down that stops being repeatable becomes AVAILABLE.
        """
        require_moderator(actor, action="update quests")
        quest = self._get(quest_id)
        update_fields: list[str] = []

        if title is not None:
            quest.title = self._clean_title(title)
            update_fields.append("title")
        if description is not None:
            quest.description = description.strip()
            update_fields.append("description")
        if bounty is not None:
            quest.bounty = self._clean_bounty(bounty)
            update_fields.append("bounty")

        if is_repeatable is not None or cooldown_days is not None:
            repeatable = quest.is_repeatable if is_repeatable is None else bool(is_repeatable)
            if repeatable and quest.status == QuestStatus.APPROVED:
                # APPROVED is terminal; a repeat schedule would never run
                logger.warning("quest.update.refused quest=%s status=%s field=is_repeatable", quest.id, quest.status)
                raise ValidationError({"is_repeatable": "An approved quest cannot be made repeatable"})
            days = cooldown_days if cooldown_days is not None else quest.cooldown_days
            quest.is_repeatable = repeatable
            quest.cooldown_days = self._clean_cooldown(repeatable, days)
            update_fields += ["is_repeatable", "cooldown_days"]

        if update_fields:
            quest.save(update_fields=[*update_fields, "updated_at"])

        if skill_requirements is not None:
            requirements = self._clean_requirements(skill_requirements)
            quest.required_skills.all().delete()
            QuestRequiredSkill.objects.bulk_create(
                [QuestRequiredSkill(quest=quest, skill_id=r.skill_id, min_level=r.min_level) for r in requirements]
            )

        if quest.status == QuestStatus.COOLDOWN and not quest.is_repeatable:
            guarded_update(
                quest.id,
                expected=QuestStatus.COOLDOWN,
                target=QuestStatus.AVAILABLE,
                now=now,
                **CLEARED_CLAIM_FIELDS,
            )
            quest.refresh_from_db()

        logger.info("quest.updated id=%s fields=%s by=%s", quest.id, update_fields, actor.id)
        return quest

    @transaction.atomic
    def delete_quest(self, *, actor: "User", quest_id: int) -> None:
        require_admin(actor, action="delete quests")
        quest = self._get(quest_id)
        quest.delete()
        logger.info("quest.deleted id=%s by=%s", quest_id, actor.id)

    # --- skill requirements ---
    def list_required_skills(self, *, quest_id: int) -> list[QuestRequiredSkill]:
        self._get(quest_id)
        return list(
            QuestRequiredSkill.objects.filter(quest_id=quest_id).select_related("skill").order_by("skill__name")
        )

    @transaction.atomic
    def add_required_skill(self, *, actor: "User", quest_id: int, skill_id: int, min_level: int) -> QuestRequiredSkill:
        require_moderator(actor, action="change quest requirements")
        quest = self._get(quest_id)
        (requirement,) = self._clean_requirements([{"skill_id": skill_id, "min_level": min_level}])

        try:
            with transaction.atomic():
                return QuestRequiredSkill.objects.create(
                    quest=quest, skill_id=requirement.skill_id, min_level=requirement.min_level
                )
        except IntegrityError:
            raise ValidationError({"skill_id": "Skill requirement already exists for this quest"})

    @transaction.atomic
    def update_required_skill(self, *, actor: "User", quest_id: int, skill_id: int, min_level: int) -> QuestRequiredSkill:
        require_moderator(actor, action="change quest requirements")
        min_level = validate_skill_level(min_level, field="min_level")
        try:
            requirement = QuestRequiredSkill.objects.select_for_update().get(quest_id=quest_id, skill_id=skill_id)
        except QuestRequiredSkill.DoesNotExist:
            raise NotFound("Quest skill requirement not found", details={"quest_id": quest_id, "skill_id": skill_id})
        requirement.min_level = min_level
        requirement.save(update_fields=["min_level"])
        return requirement

    @transaction.atomic
    def remove_required_skill(self, *, actor: "User", quest_id: int, skill_id: int) -> None:
        require_moderator(actor, action="change quest requirements")
        deleted, _ = QuestRequiredSkill.objects.filter(quest_id=quest_id, skill_id=skill_id).delete()
        if not deleted:
            raise NotFound("Quest skill requirement not found", details={"quest_id": quest_id, "skill_id": skill_id})

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------
    @transaction.atomic
    def claim(self, *, quest_id: int, user: "User", now=None) -> Quest:
        """
        AVAILABLE -> CLAIMED.

        - an elapsed cooldown is released first, so a repeatable quest is claimable the
          moment its cooldown ends
        - the skill gate is always evaluated here, whatever the client checked before
        - two simultaneous claims: one wins, the other gets Conflict
        """
        now = now or timezone.now()
        quest = self.get_quest(quest_id, now=now)

        if quest.status != QuestStatus.AVAILABLE:
            logger.warning("quest.claim.refused quest=%s user=%s status=%s", quest.id, user.id, quest.status)
            raise InvalidTransition(
                quest.status,
                QuestStatus.CLAIMED,
                message=_CLAIM_REFUSALS.get(quest.status, "Quest is not available for claiming"),
            )

        eligibility = check_eligibility(user, quest)
        if not eligibility.eligible:
            logger.warning(
                "quest.claim.skill_gate quest=%s user=%s missing=%s insufficient=%s",
                quest.id, user.id, eligibility.missing_skills, eligibility.insufficient_skills,
            )
            raise SkillRequirementsNotMet(
                eligibility.describe(),
                missing_skills=eligibility.missing_skills,
                insufficient_skills=eligibility.insufficient_skills,
            )

        guarded_update(
            quest.id,
            expected=QuestStatus.AVAILABLE,
            target=QuestStatus.CLAIMED,
            now=now,
            claimed_by=user,
            claimed_at=now,
            completed_at=None,
            rejection_reason="",
        )
        quest.refresh_from_db()

        if quest.created_by_id != user.id:
            self.notification_service.create_quest_claimed(creator=quest.created_by, claimant=user, quest=quest)
        return quest

    @transaction.atomic
    def complete(self, *, quest_id: int, user: "User", now=None) -> Quest:
        """CLAIMED -> COMPLETED, by the claimant only. Moderators are asked to review."""
        now = now or timezone.now()
        quest = self._get(quest_id)

        if quest.status != QuestStatus.CLAIMED:
            logger.warning("quest.complete.refused quest=%s user=%s status=%s", quest.id, user.id, quest.status)
            raise InvalidTransition(quest.status, QuestStatus.COMPLETED, message="Quest is not claimed")
        if quest.claimed_by_id != user.id:
            logger.warning("quest.complete.not_claimant quest=%s user=%s", quest.id, user.id)
            raise PermissionDenied("Quest is not claimed by you")

        guarded_update(
            quest.id,
            expected=QuestStatus.CLAIMED,
            target=QuestStatus.COMPLETED,
            filters={"claimed_by_id": user.id},
            now=now,
            completed_at=now,
        )
        quest.refresh_from_db()

        self.notification_service.create_quest_completed(claimant=user, quest=quest)
        return quest

    @transaction.atomic
    def approve(self, *, quest_id: int, actor: "User", now=None) -> ApprovalResult:
        """
        COMPLETED -> APPROVED (or COOLDOWN for repeatable quests).

        Claimant gets bounty_balance += bounty and experience += bounty * 10 + bonus,
        exactly once: the credit only runs after the guarded status update matched.
        """
        require_moderator(actor, action="approve quests")
        now = now or timezone.now()
        quest = self._get(quest_id)

        if quest.status != QuestStatus.COMPLETED:
            logger.warning("quest.approve.refused quest=%s status=%s by=%s", quest.id, quest.status, actor.id)
            raise InvalidTransition(
                quest.status, QuestStatus.APPROVED, message="Quest is not completed and ready for approval"
            )
        claimant_id = quest.claimed_by_id
        if claimant_id is None:
            raise ValidationError({"quest": "Quest has no claimant"})

        completed_at = quest.completed_at or now
        guard = {"claimed_by_id": claimant_id}

        if quest.is_repeatable:
            # back into rotation after cooldown_days; the claim is cleared now
            guarded_update(
                quest.id,
                expected=QuestStatus.COMPLETED,
                target=QuestStatus.COOLDOWN,
                filters=guard,
                now=now,
                last_completed_at=now,
                **CLEARED_CLAIM_FIELDS,
            )
        else:
            guarded_update(
                quest.id,
                expected=QuestStatus.COMPLETED,
                target=QuestStatus.APPROVED,
                filters=guard,
                now=now,
                last_completed_at=now,
            )

        bounty = quest.bounty
        experience = calculate_quest_experience(bounty)
        credit = self.ledger.credit(user_id=claimant_id, bounty=bounty, experience=experience)

        completion = QuestCompletion.objects.create(
            quest=quest,
            user_id=claimant_id,
            status=CompletionStatus.APPROVED,
            bounty=bounty,
            experience=experience,
            completed_at=completed_at,
            reviewed_at=now,
            reviewed_by=actor,
        )
        quest.refresh_from_db()

        claimant = get_user_model().objects.get(pk=claimant_id)
        self.notification_service.create_quest_approved(user=claimant, quest=quest, bounty=bounty, experience=experience)
        if credit.leveled_up:
            self.notification_service.create_level_up(user=claimant, new_level=credit.new_level)

        return ApprovalResult(
            quest=quest,
            completion=completion,
            bounty_awarded=credit.bounty,
            experience_gained=experience,
            leveled_up=credit.leveled_up,
            new_level=credit.new_level if credit.leveled_up else None,
        )

    @transaction.atomic
    def reject(self, *, quest_id: int, actor: "User", reason: Optional[str] = None, now=None) -> Quest:
        """
        COMPLETED -> REJECTED. No reward. The reason is stored on the quest and the
        completion row, and sent to the claimant.
        """
        require_moderator(actor, action="reject quests")
        now = now or timezone.now()
        quest = self._get(quest_id)

        if quest.status != QuestStatus.COMPLETED:
            logger.warning("quest.reject.refused quest=%s status=%s by=%s", quest.id, quest.status, actor.id)
            raise InvalidTransition(
                quest.status, QuestStatus.REJECTED, message="Quest is not completed and ready for approval"
            )
        claimant_id = quest.claimed_by_id
        if claimant_id is None:
            raise ValidationError({"quest": "Quest has no claimant"})

        reason = (reason or "").strip()
        guarded_update(
            quest.id,
            expected=QuestStatus.COMPLETED,
            target=QuestStatus.REJECTED,
            filters={"claimed_by_id": claimant_id},
            now=now,
            rejection_reason=reason,
        )

        QuestCompletion.objects.create(
            quest=quest,
            user_id=claimant_id,
            status=CompletionStatus.REJECTED,
            completed_at=quest.completed_at or now,
            reviewed_at=now,
            reviewed_by=actor,
            notes=reason,
        )
        quest.refresh_from_db()

        self.notification_service.create_quest_rejected(user=quest.claimed_by, quest=quest, reason=reason)
        return quest

    @transaction.atomic
    def reset_quest(self, *, quest_id: int, actor: "User", now=None) -> Quest:
        """
        Force a quest back to AVAILABLE.

        - COOLDOWN: ends the cooldown immediately
        - REJECTED: reopens it; claim fields and rejection reason are cleared and the
          former claimant is told it can be claimed again
        """
        require_moderator(actor, action="reset quests")
        quest = self._get(quest_id)
        previous_status = quest.status
        former_claimant = quest.claimed_by

        if previous_status not in (QuestStatus.COOLDOWN, QuestStatus.REJECTED):
            logger.warning("quest.reset.refused quest=%s status=%s by=%s", quest.id, previous_status, actor.id)
            raise InvalidTransition(previous_status, QuestStatus.AVAILABLE)

        guarded_update(
            quest.id,
            expected=previous_status,
            target=QuestStatus.AVAILABLE,
            now=now,
            rejection_reason="",
            **CLEARED_CLAIM_FIELDS,
        )
        quest.refresh_from_db()
        logger.info("quest.reset id=%s from=%s by=%s", quest.id, previous_status, actor.id)

        if previous_status == QuestStatus.REJECTED and former_claimant is not None:
            self.notification_service.create_quest_available(user=former_claimant, quest=quest)
        return quest

    # ------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------
    def _clean_title(self, title) -> str:
        title = title.strip() if isinstance(title, str) else ""
        if not title:
            raise ValidationError({"title": "Title is required"})
        if len(title) > 200:
            raise ValidationError({"title": "Title must be at most 200 characters"})
        return title

    def _clean_bounty(self, bounty) -> Decimal:
        amount = to_amount(bounty, field="bounty")
        if amount <= 0:
            raise ValidationError({"bounty": "Bounty must be a positive number"})
        if amount > MAX_BOUNTY:
            raise ValidationError({"bounty": "Bounty is too large"})
        return amount

    def _clean_cooldown(self, is_repeatable: bool, cooldown_days) -> Optional[int]:
        if not is_repeatable:
            return None
        if isinstance(cooldown_days, bool) or not isinstance(cooldown_days, int) or cooldown_days <= 0:
            raise ValidationError(
                {"cooldown_days": "Cooldown days must be a positive number for repeatable quests"}
            )
        return cooldown_days

    def _clean_requirements(self, raw: Iterable[Mapping[str, Any]]) -> list[SkillRequirement]:
        requirements: list[SkillRequirement] = []
        seen: set[int] = set()

        for item in raw or ():
            skill_id = item.get("skill_id")
            if isinstance(skill_id, bool) or not isinstance(skill_id, int):
                raise ValidationError({"skill_requirements": "Invalid skill ID in requirements"})
            min_level = validate_skill_level(item.get("min_level"), field="min_level")
            if skill_id in seen:
                raise ValidationError({"skill_requirements": "A skill can only be required once per quest"})
            seen.add(skill_id)
            requirements.append(SkillRequirement(skill_id=skill_id, min_level=min_level))

        if requirements:
            existing = set(Skill.objects.filter(id__in=seen).values_list("id", flat=True))
            missing = sorted(seen - existing)
            if missing:
                raise ValidationError({"skill_requirements": f"Skill not found: {', '.join(map(str, missing))}"})
        return requirements
