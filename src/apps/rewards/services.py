# src/apps/rewards/services.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Optional

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F, Sum

from apps.accounts.permissions import require_admin
from apps.common.exceptions import Conflict, NotFound
from apps.common.periods import quarter_bounds
from apps.quests.models import CompletionStatus, QuestCompletion

from .leveling import calculate_level
from .models import RewardConfig

if TYPE_CHECKING:
    from apps.accounts.models import User

logger = logging.getLogger(__name__)


def to_amount(value, *, field: str = "amount") -> Decimal:
    """Coerce int/str/Decimal to a 2-place Decimal; floats go through str() to avoid binary noise."""
    if isinstance(value, bool):
        raise ValidationError({field: "Must be a number"})
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({field: "Must be a number"})
    if not amount.is_finite():
        raise ValidationError({field: "Must be a number"})
    return amount.quantize(Decimal("0.01"))


@dataclass(frozen=True)
class CreditResult:
    user_id: int
    bounty: Decimal
    experience_gained: int
    old_experience: int
    new_experience: int
    leveled_up: bool
    new_level: int


class RewardLedger:
    """
    Every change to User.bounty_balance / User.experience goes through here.

    Rules:
    - increments use F() so concurrent writers never overwrite each other
    - debits are guarded (WHERE bounty_balance >= amount); balances never go negative
    - callers wrap these in their own transaction.atomic together with the status change
      that justifies the credit
    """

    def _users(self):
        return get_user_model().objects

    def credit(self, *, user_id: int, bounty, experience: int) -> CreditResult:
        bounty = to_amount(bounty, field="bounty")
        if bounty < 0 or experience < 0:
            raise ValidationError({"amount": "Credits must not be negative"})

        rows = self._users().filter(pk=user_id).update(
            bounty_balance=F("bounty_balance") + bounty,
            experience=F("experience") + experience,
        )
        if rows != 1:
            raise NotFound("User not found", details={"user_id": user_id})

        new_xp = self._users().filter(pk=user_id).values_list("experience", flat=True).get()
        old_xp = new_xp - experience
        new_level = calculate_level(new_xp)

        logger.info(
            "ledger.credit user=%s bounty=%s xp=%s level=%s",
            user_id, bounty, experience, new_level,
        )
        return CreditResult(
            user_id=user_id,
            bounty=bounty,
            experience_gained=experience,
            old_experience=old_xp,
            new_experience=new_xp,
            leveled_up=new_level > calculate_level(old_xp),
            new_level=new_level,
        )

    def deposit(self, *, user_id: int, amount) -> None:
        """Balance-only credit (store refunds and seller payouts)."""
        amount = to_amount(amount)
        if amount <= 0:
            raise ValidationError({"amount": "Amount must be positive"})
        rows = self._users().filter(pk=user_id).update(bounty_balance=F("bounty_balance") + amount)
        if rows != 1:
            raise NotFound("User not found", details={"user_id": user_id})
        logger.info("ledger.deposit user=%s amount=%s", user_id, amount)

    def refund(self, *, user_id: int, amount) -> None:
        """Give back an earlier debit."""
        logger.info("ledger.refund user=%s amount=%s", user_id, amount)
        self.deposit(user_id=user_id, amount=amount)

    def debit(self, *, user_id: int, amount) -> None:
        amount = to_amount(amount)
        if amount <= 0:
            raise ValidationError({"amount": "Amount must be positive"})
        rows = (
            self._users()
            .filter(pk=user_id, bounty_balance__gte=amount)
            .update(bounty_balance=F("bounty_balance") - amount)
        )
        if rows != 1:
            logger.warning("ledger.debit.rejected user=%s amount=%s", user_id, amount)
            raise Conflict(
                "Bounty balance changed or is insufficient; reload and try again",
                details={"user_id": user_id, "amount": str(amount)},
            )
        logger.info("ledger.debit user=%s amount=%s", user_id, amount)


@dataclass(frozen=True)
class CollectiveProgress:
    quarter: str
    goal: Decimal
    reward: str
    progress: Decimal
    percent: float


class RewardsService:
    """Reward configuration and the quarterly collective goal."""

    def get_config(self) -> RewardConfig:
        """The saved config, or an unsaved all-zero default when none exists yet."""
        return RewardConfig.objects.order_by("id").first() or RewardConfig()

    @transaction.atomic
    def update_config(
        self,
        *,
        actor: "User",
        monthly_bounty_reward,
        monthly_quest_reward,
        quarterly_collective_goal,
        quarterly_collective_reward: str,
    ) -> RewardConfig:
        require_admin(actor, action="change reward settings")

        values = {
            "monthly_bounty_reward": to_amount(monthly_bounty_reward, field="monthly_bounty_reward"),
            "monthly_quest_reward": to_amount(monthly_quest_reward, field="monthly_quest_reward"),
            "quarterly_collective_goal": to_amount(quarterly_collective_goal, field="quarterly_collective_goal"),
        }
        for name, value in values.items():
            if value < 0:
                raise ValidationError({name: "Must not be negative"})

        reward_text = (quarterly_collective_reward or "").strip() if isinstance(quarterly_collective_reward, str) else ""
        if not reward_text:
            raise ValidationError({"quarterly_collective_reward": "Collective reward description is required"})

        config = RewardConfig.objects.select_for_update().order_by("id").first()
        if config is None:
            config = RewardConfig.objects.create(quarterly_collective_reward=reward_text, **values)
        else:
            for name, value in values.items():
                setattr(config, name, value)
            config.quarterly_collective_reward = reward_text
            config.save()

        logger.info("rewards.config_updated by=%s goal=%s", actor.id, config.quarterly_collective_goal)
        return config

    def collective_progress(self, *, quarter: str) -> CollectiveProgress:
        """
        Sum of bounty from APPROVED completions whose completed_at falls in the quarter.
        """
        start, end = quarter_bounds(quarter)
        config = self.get_config()

        progress = (
            QuestCompletion.objects.filter(
                status=CompletionStatus.APPROVED,
                completed_at__gte=start,
                completed_at__lt=end,
            ).aggregate(total=Sum("bounty"))["total"]
            or Decimal("0")
        )

        goal = config.quarterly_collective_goal or Decimal("0")
        percent = float(progress / goal * 100) if goal > 0 else 0.0

        return CollectiveProgress(
            quarter=quarter,
            goal=goal,
            reward=config.quarterly_collective_reward or "",
            progress=progress,
            percent=percent,
        )
