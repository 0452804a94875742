"""
Stock transfer workflow: validation, state machine, FEFO consumption and atomicity
"""
from datetime import date, timedelta

import pytest

from pharmaledger.exceptions import (
    InsufficientStockError,
    InvalidInputError,
    InvalidStateError,
)
from pharmaledger.models import Batch, Notification, NotificationType, TransferStatus
from pharmaledger.schemas.transfer import TransferItemCreate
from pharmaledger.services.batch_ledger_service import BatchLedgerService
from pharmaledger.services.transfer_service import TransferService


def _request(db, branch, other_branch, user, *items):
    return TransferService.request_transfer(db, branch.id, other_branch.id, list(items), requested_by=user.id)


def _destination_batches(db, other_branch, product):
    return {
        b.batch_number: b
        for b in db.query(Batch).filter(Batch.branch_id == other_branch.id, Batch.product_id == product.id)
    }


class TestRequestTransfer:

    def test_creates_pending_transfer_without_moving_stock(self, db, branch, other_branch, user, product, make_batch):
        batch = make_batch(product, quantity=10)

        transfer = _request(db, branch, other_branch, user, TransferItemCreate(product_id=product.id, quantity=4))

        assert transfer.status == TransferStatus.PENDING
        assert transfer.transfer_number.startswith("TRF-")
        assert len(transfer.items) == 1
        db.refresh(batch)
        assert batch.quantity == 10

    def test_same_branch_rejected(self, db, branch, user, product, make_batch):
        make_batch(product, quantity=10)
        with pytest.raises(InvalidInputError):
            _request(db, branch, branch, user, TransferItemCreate(product_id=product.id, quantity=1))

    def test_insufficient_source_stock(self, db, branch, other_branch, user, product, make_batch):
        make_batch(product, quantity=3)
        make_batch(product, quantity=2)
        with pytest.raises(InsufficientStockError):
            _request(db, branch, other_branch, user, TransferItemCreate(product_id=product.id, quantity=6))

    def test_targeted_batch_must_be_at_source(self, db, branch, other_branch, user, product, make_batch):
        elsewhere = make_batch(product, quantity=10, at_branch=other_branch)
        with pytest.raises(InvalidInputError):
            _request(db, branch, other_branch, user,
                     TransferItemCreate(product_id=product.id, quantity=1, batch_id=elsewhere.id))

    def test_targeted_batch_must_cover_quantity(self, db, branch, other_branch, user, product, make_batch):
        batch = make_batch(product, quantity=2)
        with pytest.raises(InsufficientStockError):
            _request(db, branch, other_branch, user,
                     TransferItemCreate(product_id=product.id, quantity=3, batch_id=batch.id))


class TestTransferStateMachine:

    def test_complete_requires_approval(self, db, branch, other_branch, user, product, make_batch):
        make_batch(product, quantity=10)
        transfer = _request(db, branch, other_branch, user, TransferItemCreate(product_id=product.id, quantity=1))

        with pytest.raises(InvalidStateError):
            TransferService.complete_transfer(db, transfer.id)

    def test_approve_only_once(self, db, branch, other_branch, user, product, make_batch):
        make_batch(product, quantity=10)
        transfer = _request(db, branch, other_branch, user, TransferItemCreate(product_id=product.id, quantity=1))

        transfer = TransferService.approve_transfer(db, transfer.id, approved_by=user.id)
        assert transfer.status == TransferStatus.APPROVED
        assert transfer.approved_by == user.id
        assert transfer.approved_at is not None

        with pytest.raises(InvalidStateError):
            TransferService.approve_transfer(db, transfer.id, approved_by=user.id)

    def test_completed_transfer_is_terminal(self, db, branch, other_branch, user, product, make_batch):
        make_batch(product, quantity=10)
        transfer = _request(db, branch, other_branch, user, TransferItemCreate(product_id=product.id, quantity=1))
        TransferService.approve_transfer(db, transfer.id, approved_by=user.id)
        transfer = TransferService.complete_transfer(db, transfer.id)

        assert transfer.status == TransferStatus.COMPLETED
        assert transfer.completed_at is not None
        with pytest.raises(InvalidStateError):
            TransferService.complete_transfer(db, transfer.id)
        with pytest.raises(InvalidStateError):
            TransferService.approve_transfer(db, transfer.id, approved_by=user.id)


class TestCompleteTransfer:

    def test_fefo_consumption_splits_across_batches(self, db, branch, other_branch, user, product, make_batch):
        today = date.today()
        b1 = make_batch(product, quantity=5, expiry_date=today + timedelta(days=30), batch_number="E1")
        b3 = make_batch(product, quantity=5, expiry_date=today + timedelta(days=90), batch_number="E3")
        b2 = make_batch(product, quantity=5, expiry_date=today + timedelta(days=60), batch_number="E2")
        transfer = _request(db, branch, other_branch, user, TransferItemCreate(product_id=product.id, quantity=6))
        TransferService.approve_transfer(db, transfer.id, approved_by=user.id)

        TransferService.complete_transfer(db, transfer.id, performed_by=user.id)

        for batch in (b1, b2, b3):
            db.refresh(batch)
        assert (b1.quantity, b2.quantity, b3.quantity) == (0, 4, 5)
        received = _destination_batches(db, other_branch, product)
        assert set(received) == {"E1", "E2"}
        assert received["E1"].quantity == 5
        assert received["E2"].quantity == 1
        assert received["E2"].expiry_date == b2.expiry_date
        assert received["E2"].selling_price == b2.selling_price

    def test_targeted_item_merges_into_matching_destination_batch(
        self, db, branch, other_branch, user, product, make_batch
    ):
        expiry = date.today() + timedelta(days=120)
        source = make_batch(product, quantity=8, expiry_date=expiry, batch_number="LOT-7")
        existing = make_batch(product, quantity=2, expiry_date=expiry, batch_number="LOT-7", at_branch=other_branch)
        transfer = _request(db, branch, other_branch, user,
                            TransferItemCreate(product_id=product.id, quantity=3, batch_id=source.id))
        TransferService.approve_transfer(db, transfer.id, approved_by=user.id)

        TransferService.complete_transfer(db, transfer.id)

        db.refresh(source)
        db.refresh(existing)
        assert source.quantity == 5
        assert existing.quantity == 5
        assert db.query(Batch).filter(Batch.branch_id == other_branch.id).count() == 1

    def test_failure_on_later_item_rolls_back_everything(
        self, db, branch, other_branch, user, product, make_product, make_batch
    ):
        other_product = make_product("Metformin 500mg")
        first = make_batch(product, quantity=10)
        second = make_batch(other_product, quantity=4)
        transfer = _request(
            db, branch, other_branch, user,
            TransferItemCreate(product_id=product.id, quantity=6),
            TransferItemCreate(product_id=other_product.id, quantity=4),
        )
        TransferService.approve_transfer(db, transfer.id, approved_by=user.id)
        # Stock sold elsewhere between approval and completion
        BatchLedgerService.adjust_stock(db, second.id, -3, "Sold over the counter")

        with pytest.raises(InsufficientStockError):
            TransferService.complete_transfer(db, transfer.id)

        db.refresh(first)
        db.refresh(second)
        assert first.quantity == 10
        assert second.quantity == 1
        assert db.query(Batch).filter(Batch.branch_id == other_branch.id).count() == 0
        assert TransferService.get_transfer(db, transfer.id).status == TransferStatus.APPROVED

    def test_completion_notifies_destination_branch(self, db, branch, other_branch, user, product, make_batch):
        make_batch(product, quantity=10)
        transfer = _request(db, branch, other_branch, user, TransferItemCreate(product_id=product.id, quantity=2))
        TransferService.approve_transfer(db, transfer.id, approved_by=user.id)

        TransferService.complete_transfer(db, transfer.id)

        notification = db.query(Notification).filter(
            Notification.type == NotificationType.TRANSFER_COMPLETED
        ).one()
        assert notification.branch_id == other_branch.id


def test_list_transfers_filters_by_branch_and_status(db, branch, other_branch, make_branch, user, product, make_batch):
    third = make_branch("Third Branch")
    make_batch(product, quantity=20)
    to_other = _request(db, branch, other_branch, user, TransferItemCreate(product_id=product.id, quantity=1))
    to_third = _request(db, branch, third, user, TransferItemCreate(product_id=product.id, quantity=1))
    TransferService.approve_transfer(db, to_third.id, approved_by=user.id)

    assert {t.id for t in TransferService.list_transfers(db, branch_id=branch.id)} == {to_other.id, to_third.id}
    assert [t.id for t in TransferService.list_transfers(db, branch_id=other_branch.id)] == [to_other.id]
    assert [t.id for t in TransferService.list_transfers(db, status=TransferStatus.APPROVED)] == [to_third.id]
