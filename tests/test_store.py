"""
Store: purchases debit right away, processing pays the seller or refunds the buyer.
"""

from decimal import Decimal

import pytest
from django.core.exceptions import PermissionDenied, ValidationError

from apps.accounts.models import User
from apps.common.exceptions import Conflict, InvalidTransition, NotFound
from apps.notifications.models import Notification, NotificationType
from apps.store.models import StoreItem, StoreTransaction, TransactionStatus

pytestmark = pytest.mark.django_db


class TestItems:
    def test_moderator_creates_item(self, store_service, editor):
        item = store_service.create_item(actor=editor, name="Movie night pick", cost="30")
        assert item.cost == Decimal("30.00")
        assert item.created_by_id == editor.id

    def test_player_cannot_create(self, store_service, player):
        with pytest.raises(PermissionDenied):
            store_service.create_item(actor=player, name="Free candy", cost=1)

    def test_cost_must_be_positive(self, store_service, editor):
        with pytest.raises(ValidationError):
            store_service.create_item(actor=editor, name="Gift", cost=0)

    def test_list_hides_inactive(self, store_service, make_item):
        visible = make_item(name="A")
        make_item(name="B", is_active=False)

        assert [i.id for i in store_service.list_items().items] == [visible.id]
        assert store_service.list_items(include_inactive=True).total == 2

    def test_delete_with_history_deactivates(self, store_service, admin, player, make_item, fund):
        item = make_item(cost=5)
        fund(player, 10)
        store_service.purchase(user=player, item_id=item.id)

        store_service.delete_item(actor=admin, item_id=item.id)

        item.refresh_from_db()
        assert item.is_active is False

    def test_delete_unused(self, store_service, admin, make_item):
        item = make_item()
        store_service.delete_item(actor=admin, item_id=item.id)
        assert not StoreItem.objects.filter(id=item.id).exists()


class TestPurchase:
    def test_purchase_debits_and_notifies_seller(self, store_service, player, editor, make_item, fund):
        item = make_item(cost="25.00", seller=editor)
        fund(player, 40)

        row = store_service.purchase(user=player, item_id=item.id)

        player.refresh_from_db()
        assert row.status == TransactionStatus.PENDING
        assert row.amount == Decimal("25.00")
        assert player.bounty_balance == Decimal("15.00")
        assert Notification.objects.filter(user=editor, type=NotificationType.STORE_PURCHASE).exists()

    def test_insufficient_balance(self, store_service, player, make_item, fund):
        item = make_item(cost="25.00")
        fund(player, 10)

        with pytest.raises(ValidationError) as exc:
            store_service.purchase(user=player, item_id=item.id)

        assert "bounty_balance" in exc.value.message_dict
        player.refresh_from_db()
        assert player.bounty_balance == Decimal("10.00")
        assert not StoreTransaction.objects.exists()

    def test_inactive_item(self, store_service, player, make_item, fund):
        item = make_item(is_active=False)
        fund(player, 100)
        with pytest.raises(ValidationError):
            store_service.purchase(user=player, item_id=item.id)

    def test_balance_spent_elsewhere_is_a_conflict(self, store_service, player, make_item, fund, mocker):
        item = make_item(cost="25.00")
        fund(player, 30)

        def drained(**kwargs):
            # another purchase lands after our balance check
            User.objects.filter(pk=player.pk).update(bounty_balance=Decimal("5.00"))
            return original_debit(**kwargs)

        original_debit = store_service.ledger.debit
        mocker.patch.object(store_service.ledger, "debit", side_effect=drained)

        with pytest.raises(Conflict):
            store_service.purchase(user=player, item_id=item.id)

    def test_unknown_item(self, store_service, player):
        with pytest.raises(NotFound):
            store_service.purchase(user=player, item_id=123456)

    def test_list_purchases(self, store_service, player, other_player, make_item, fund):
        item = make_item(cost=1)
        fund(player, 5)
        fund(other_player, 5)
        mine = store_service.purchase(user=player, item_id=item.id)
        store_service.purchase(user=other_player, item_id=item.id)

        assert [t.id for t in store_service.list_purchases(user=player).items] == [mine.id]


@pytest.fixture
def pending(store_service, player, editor, make_item, fund):
    item = make_item(cost="20.00", seller=editor)
    fund(player, 20)
    return store_service.purchase(user=player, item_id=item.id)


class TestProcess:
    def test_approve_pays_seller(self, store_service, pending, admin, editor, player):
        row = store_service.process(actor=admin, transaction_id=pending.id, status=TransactionStatus.APPROVED)

        editor.refresh_from_db()
        player.refresh_from_db()
        assert row.status == TransactionStatus.APPROVED
        assert row.processed_by_id == admin.id
        assert editor.bounty_balance == Decimal("20.00")
        assert player.bounty_balance == Decimal("0.00")
        assert Notification.objects.filter(user=player, type=NotificationType.STORE_APPROVED).exists()

    def test_reject_refunds_buyer(self, store_service, pending, admin, editor, player):
        row = store_service.process(
            actor=admin, transaction_id=pending.id, status=TransactionStatus.REJECTED, notes="Out of stock"
        )

        editor.refresh_from_db()
        player.refresh_from_db()
        assert row.notes == "Out of stock"
        assert player.bounty_balance == Decimal("20.00")
        assert editor.bounty_balance == Decimal("0.00")
        note = Notification.objects.get(user=player, type=NotificationType.STORE_REJECTED)
        assert "Out of stock" in note.message

    def test_only_pending_can_be_processed(self, store_service, pending, admin, player):
        store_service.process(actor=admin, transaction_id=pending.id, status=TransactionStatus.REJECTED)

        with pytest.raises(InvalidTransition):
            store_service.process(actor=admin, transaction_id=pending.id, status=TransactionStatus.APPROVED)

        player.refresh_from_db()
        assert player.bounty_balance == Decimal("20.00")

    def test_invalid_target_status(self, store_service, pending, admin):
        with pytest.raises(ValidationError):
            store_service.process(actor=admin, transaction_id=pending.id, status=TransactionStatus.PENDING)

    def test_player_cannot_process(self, store_service, pending, other_player):
        with pytest.raises(PermissionDenied):
            store_service.process(actor=other_player, transaction_id=pending.id, status=TransactionStatus.APPROVED)

    def test_list_pending(self, store_service, pending, editor):
        assert [t.id for t in store_service.list_pending(actor=editor).items] == [pending.id]
