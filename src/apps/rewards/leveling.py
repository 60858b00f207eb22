# src/apps/rewards/leveling.py
"""
Leveling curve and quest experience.

level = floor(sqrt(experience / 100)) + 1

    Level 1:    0 -  99 XP
    Level 2:  100 - 399 XP
    Level 3:  400 - 899 XP
    Level 4:  900 - 1599 XP

Pure functions only. Level is derived from the stored experience counter
every time, so it cannot drift out of sync.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN

XP_PER_LEVEL_UNIT = 100

# quest experience = bounty * 10 + difficulty bonus
QUEST_XP_MULTIPLIER = 10
HARD_BOUNTY_THRESHOLD = 30
MEDIUM_BOUNTY_THRESHOLD = 15
HARD_BONUS = 150
MEDIUM_BONUS = 50


@dataclass(frozen=True)
class LevelInfo:
    level: int
    experience: int
    experience_to_next: int
    experience_for_current_level: int
    progress_to_next: float  # 0..1


def calculate_level(experience: int) -> int:
    experience = max(0, int(experience))
    # isqrt keeps exact squares (100, 400, 900 ...) on the right side of the boundary
    return math.isqrt(experience // XP_PER_LEVEL_UNIT) + 1


def experience_for_level(level: int) -> int:
    """Total experience needed to reach `level` (level 1 needs 0)."""
    if level < 1:
        raise ValueError("level must be >= 1")
    return (level - 1) ** 2 * XP_PER_LEVEL_UNIT


def experience_to_next_level(experience: int) -> int:
    return experience_for_level(calculate_level(experience) + 1) - experience


def progress_to_next_level(experience: int) -> float:
    current = calculate_level(experience)
    floor_xp = experience_for_level(current)
    ceil_xp = experience_for_level(current + 1)
    return (experience - floor_xp) / (ceil_xp - floor_xp)


def level_info(experience: int) -> LevelInfo:
    experience = max(0, int(experience))
    return LevelInfo(
        level=calculate_level(experience),
        experience=experience,
        experience_to_next=experience_to_next_level(experience),
        experience_for_current_level=experience_for_level(calculate_level(experience)),
        progress_to_next=progress_to_next_level(experience),
    )


def calculate_quest_experience(bounty) -> int:
    """
    bounty * 10 + bonus, bonus = +150 if bounty > 30, +50 if bounty > 15, else 0.

    Decimal bounties are multiplied first and then truncated to a whole number.
    """
    bounty = Decimal(str(bounty))
    base = int((bounty * QUEST_XP_MULTIPLIER).to_integral_value(rounding=ROUND_DOWN))

    if bounty > HARD_BOUNTY_THRESHOLD:
        bonus = HARD_BONUS
    elif bounty > MEDIUM_BOUNTY_THRESHOLD:
        bonus = MEDIUM_BONUS
    else:
        bonus = 0
    return base + bonus


def check_level_up(old_experience: int, new_experience: int) -> bool:
    return calculate_level(new_experience) > calculate_level(old_experience)
