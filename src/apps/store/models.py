# src/apps/store/models.py
from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class StoreItem(models.Model):
    """Something a player can buy with bounty. created_by is the seller who gets paid."""

    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    cost = models.DecimalField(max_digits=10, decimal_places=2)
    is_active = models.BooleanField(default=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="store_items",
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "store_item"
        ordering = ["name", "id"]
        constraints = [
            models.CheckConstraint(condition=Q(cost__gt=0), name="ck_store_item_cost_positive"),
        ]

    def __str__(self) -> str:
        return f"StoreItem({self.id}): {self.name} ({self.cost})"


class TransactionStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    APPROVED = "APPROVED", "Approved"
    REJECTED = "REJECTED", "Rejected"


class StoreTransaction(models.Model):
    """
    One purchase. The buyer is charged when it is created (PENDING);
    APPROVED pays the seller, REJECTED refunds the buyer.
    """

    item = models.ForeignKey(StoreItem, on_delete=models.PROTECT, related_name="transactions")
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="store_purchases",
    )
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="store_sales",
    )
    # cost at the time of purchase
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(
        max_length=10,
        choices=TransactionStatus.choices,
        default=TransactionStatus.PENDING,
    )
    notes = models.TextField(blank=True)

    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="processed_store_transactions",
    )
    processed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "store_transaction"
        indexes = [
            models.Index(fields=["buyer", "created_at"]),
            models.Index(fields=["status", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"StoreTransaction({self.id}): item={self.item_id} buyer={self.buyer_id} [{self.status}]"
