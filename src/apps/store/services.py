# src/apps/store/services.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from apps.accounts.permissions import require_admin, require_moderator
from apps.common.exceptions import Conflict, InvalidTransition, NotFound
from apps.common.pagination import Page, paginate
from apps.notifications.services import NotificationService
from apps.rewards.services import RewardLedger, to_amount

from .models import StoreItem, StoreTransaction, TransactionStatus

if TYPE_CHECKING:
    from apps.accounts.models import User

logger = logging.getLogger(__name__)


class StoreService:
    """
    Bounty store.

    Money flow:
    - purchase: buyer is debited right away (guarded, never below zero), row is PENDING
    - process APPROVED: seller receives the amount
    - process REJECTED: buyer gets the amount back
    """

    def __init__(self) -> None:
        self.notification_service = NotificationService()
        self.ledger = RewardLedger()

    # -----------------------------
    # Items
    # -----------------------------
    def list_items(self, *, include_inactive: bool = False, page: int = 1, limit: Optional[int] = None) -> Page:
        qs = StoreItem.objects.select_related("created_by")
        if not include_inactive:
            qs = qs.filter(is_active=True)
        return paginate(qs.order_by("name", "id"), page=page, limit=limit)

    def get_item(self, item_id: int) -> StoreItem:
        try:
            return StoreItem.objects.select_related("created_by").get(id=item_id)
        except StoreItem.DoesNotExist:
            raise NotFound("Store item not found", details={"item_id": item_id})

    @transaction.atomic
    def create_item(self, *, actor: "User", name: str, cost, description: str = "", is_active: bool = True) -> StoreItem:
        require_moderator(actor, action="add store items")
        item = StoreItem.objects.create(
            name=self._clean_name(name),
            description=(description or "").strip(),
            cost=self._clean_cost(cost),
            is_active=bool(is_active),
            created_by=actor,
        )
        logger.info("store.item_created id=%s cost=%s by=%s", item.id, item.cost, actor.id)
        return item

    @transaction.atomic
    def update_item(
        self,
        *,
        actor: "User",
        item_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        cost=None,
        is_active: Optional[bool] = None,
    ) -> StoreItem:
        """Price changes do not touch PENDING transactions; they keep the amount paid."""
        require_moderator(actor, action="edit store items")
        item = self.get_item(item_id)

        if name is not None:
            item.name = self._clean_name(name)
        if description is not None:
            item.description = description.strip()
        if cost is not None:
            item.cost = self._clean_cost(cost)
        if is_active is not None:
            item.is_active = bool(is_active)

        item.save()
        return item

    @transaction.atomic
    def delete_item(self, *, actor: "User", item_id: int) -> None:
        """Items with purchase history are deactivated instead of deleted."""
        require_admin(actor, action="delete store items")
        item = self.get_item(item_id)
        if item.transactions.exists():
            item.is_active = False
            item.save(update_fields=["is_active", "updated_at"])
            logger.info("store.item_deactivated id=%s by=%s", item.id, actor.id)
            return
        item.delete()
        logger.info("store.item_deleted id=%s by=%s", item_id, actor.id)

    # -----------------------------
    # Purchases
    # -----------------------------
    @transaction.atomic
    def purchase(self, *, user: "User", item_id: int) -> StoreTransaction:
        item = self.get_item(item_id)
        if not item.is_active:
            raise ValidationError({"item": "This item is not available for purchase"})

        user.refresh_from_db(fields=["bounty_balance"])
        if user.bounty_balance < item.cost:
            logger.warning(
                "store.purchase.insufficient user=%s item=%s balance=%s cost=%s",
                user.id, item.id, user.bounty_balance, item.cost,
            )
            raise ValidationError({"bounty_balance": "Insufficient bounty balance for this purchase"})

        self.ledger.debit(user_id=user.id, amount=item.cost)
        row = StoreTransaction.objects.create(
            item=item,
            buyer=user,
            seller_id=item.created_by_id,
            amount=item.cost,
            status=TransactionStatus.PENDING,
        )
        user.refresh_from_db(fields=["bounty_balance"])

        logger.info("store.purchase tx=%s user=%s item=%s amount=%s", row.id, user.id, item.id, row.amount)
        self.notification_service.create_store_purchase(seller=item.created_by, buyer=user, transaction_row=row)
        return row

    def list_purchases(self, *, user: "User", page: int = 1, limit: Optional[int] = None) -> Page:
        qs = StoreTransaction.objects.filter(buyer=user).select_related("item", "seller")
        return paginate(qs.order_by("-created_at", "-id"), page=page, limit=limit)

    def list_pending(self, *, actor: "User", page: int = 1, limit: Optional[int] = None) -> Page:
        require_moderator(actor, action="review store purchases")
        qs = StoreTransaction.objects.filter(status=TransactionStatus.PENDING).select_related("item", "buyer", "seller")
        return paginate(qs.order_by("created_at", "id"), page=page, limit=limit)

    @transaction.atomic
    def process(
        self,
        *,
        actor: "User",
        transaction_id: int,
        status: str,
        notes: Optional[str] = None,
        now=None,
    ) -> StoreTransaction:
        require_moderator(actor, action="process store purchases")
        if status not in (TransactionStatus.APPROVED, TransactionStatus.REJECTED):
            raise ValidationError({"status": "Status must be APPROVED or REJECTED"})

        try:
            row = StoreTransaction.objects.select_related("item", "buyer").get(id=transaction_id)
        except StoreTransaction.DoesNotExist:
            raise NotFound("Store transaction not found", details={"transaction_id": transaction_id})

        if row.status != TransactionStatus.PENDING:
            logger.warning("store.process.refused tx=%s status=%s by=%s", row.pk, row.status, actor.id)
            raise InvalidTransition(row.status, status, message="Transaction has already been processed")

        now = now or timezone.now()
        rows = StoreTransaction.objects.filter(pk=row.pk, status=TransactionStatus.PENDING).update(
            status=status,
            notes=(notes or "").strip(),
            processed_by=actor,
            processed_at=now,
            updated_at=now,
        )
        if rows != 1:
            logger.warning("store.process.conflict tx=%s", row.pk)
            raise Conflict(
                "Transaction was processed by another request",
                details={"transaction_id": row.pk},
            )

        if status == TransactionStatus.APPROVED:
            self.ledger.deposit(user_id=row.seller_id, amount=row.amount)
        else:
            self.ledger.refund(user_id=row.buyer_id, amount=row.amount)

        row.refresh_from_db()
        logger.info("store.processed tx=%s status=%s by=%s", row.pk, status, actor.id)
        self.notification_service.create_store_processed(
            buyer=row.buyer,
            transaction_row=row,
            approved=status == TransactionStatus.APPROVED,
        )
        return row

    # -----------------------------
    # Validation
    # -----------------------------
    def _clean_name(self, name) -> str:
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            raise ValidationError({"name": "Name is required"})
        if len(name) > 100:
            raise ValidationError({"name": "Name must be at most 100 characters"})
        return name

    def _clean_cost(self, cost) -> Decimal:
        amount = to_amount(cost, field="cost")
        if amount <= 0:
            raise ValidationError({"cost": "Cost must be a positive number"})
        return amount
