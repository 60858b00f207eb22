# src/apps/skills/gate.py
"""
Skill gate: may this user claim this quest?

check_eligibility() is the single implementation used both for the UI
pre-check and for the server-side enforcement inside QuestService.claim().
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .models import UserSkill

if TYPE_CHECKING:
    from apps.accounts.models import User
    from apps.quests.models import Quest


@dataclass(frozen=True)
class SkillShortfall:
    skill_id: int
    skill_name: str
    required_level: int
    current_level: int  # 0 when the user has no row for the skill


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    missing_skills: list[int] = field(default_factory=list)
    insufficient_skills: list[int] = field(default_factory=list)
    shortfalls: list[SkillShortfall] = field(default_factory=list)

    def describe(self) -> str:
        """User-displayable explanation, empty when eligible."""
        if self.eligible:
            return ""

        lines = ["You do not meet the skill requirements for this quest:"]
        missing = [s.skill_name for s in self.shortfalls if s.current_level == 0]
        low = [
            f"{s.skill_name} (required: {s.required_level}, current: {s.current_level})"
            for s in self.shortfalls
            if s.current_level > 0
        ]
        if missing:
            lines.append(f"Missing skills: {', '.join(missing)}")
        if low:
            lines.append(f"Insufficient skill levels: {', '.join(low)}")
        return "\n".join(lines)


def check_eligibility(user: "User", quest: "Quest") -> EligibilityResult:
    """
    Compare the user's skill levels with every QuestRequiredSkill of the quest.

    - missing:      no UserSkill row for a required skill
    - insufficient: a row exists but level < min_level
    A quest with no requirements is always eligible. Lists are ordered by skill id.
    """
    requirements = list(
        quest.required_skills.select_related("skill").order_by("skill_id")
    )
    if not requirements:
        return EligibilityResult(eligible=True)

    levels = dict(
        UserSkill.objects.filter(
            user_id=user.pk,
            skill_id__in=[r.skill_id for r in requirements],
        ).values_list("skill_id", "level")
    )

    missing: list[int] = []
    insufficient: list[int] = []
    shortfalls: list[SkillShortfall] = []

    for req in requirements:
        current = levels.get(req.skill_id)
        if current is None:
            missing.append(req.skill_id)
        elif current < req.min_level:
            insufficient.append(req.skill_id)
        else:
            continue
        shortfalls.append(
            SkillShortfall(
                skill_id=req.skill_id,
                skill_name=req.skill.name,
                required_level=req.min_level,
                current_level=current or 0,
            )
        )

    return EligibilityResult(
        eligible=not shortfalls,
        missing_skills=missing,
        insufficient_skills=insufficient,
        shortfalls=shortfalls,
    )
