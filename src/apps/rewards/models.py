# src/apps/rewards/models.py
from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone


class RewardConfig(models.Model):
    """
    Household-wide reward settings (a single row).

    - monthly_*_reward: prizes for the monthly bounty / quest leaderboards
    - quarterly_collective_goal: total approved bounty the household aims for per quarter
    - quarterly_collective_reward: what everyone gets when the goal is reached (free text)
    """

    monthly_bounty_reward = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    monthly_quest_reward = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    quarterly_collective_goal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    quarterly_collective_reward = models.CharField(max_length=200, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "rewards_config"

    def __str__(self) -> str:
        return f"RewardConfig(goal={self.quarterly_collective_goal})"
