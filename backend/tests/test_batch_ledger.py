"""
Batch ledger: adjustments, FEFO lookup and batch maintenance
"""
import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from pharmaledger.database import UnitOfWork
from pharmaledger.exceptions import (
    ConflictError,
    InsufficientStockError,
    InvalidQuantityError,
    NotFoundError,
)
from pharmaledger.models import Batch, MovementType, StockMovement
from pharmaledger.services.batch_ledger_service import BatchLedgerService, earliest_expiry_first


def _movements(db, batch):
    return db.query(StockMovement).filter(StockMovement.batch_id == batch.id).order_by(StockMovement.quantity_after).all()


class TestCreateBatch:

    def test_records_opening_balance(self, db, product, make_batch):
        batch = make_batch(product, quantity=12)

        assert batch.quantity == 12
        movements = _movements(db, batch)
        assert len(movements) == 1
        assert movements[0].movement_type == MovementType.OPENING_BALANCE
        assert movements[0].quantity_delta == 12
        assert movements[0].quantity_after == 12

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_rejects_non_positive_quantity(self, product, make_batch, quantity):
        with pytest.raises(InvalidQuantityError):
            make_batch(product, quantity=quantity)

    def test_unknown_product(self, db, branch):
        with pytest.raises(NotFoundError):
            BatchLedgerService.create_batch(db, uuid.uuid4(), branch.id, "X1", 5)


class TestAdjust:

    def test_decrement_below_zero_leaves_batch_unchanged(self, db, product, make_batch):
        batch = make_batch(product, quantity=5)

        with pytest.raises(InsufficientStockError) as excinfo:
            with UnitOfWork(db) as uow:
                BatchLedgerService.adjust(uow, batch.id, -6, "Damaged")

        assert isinstance(excinfo.value, InvalidQuantityError)
        db.refresh(batch)
        assert batch.quantity == 5
        assert len(_movements(db, batch)) == 1

    def test_unknown_batch(self, db):
        with pytest.raises(NotFoundError):
            with UnitOfWork(db) as uow:
                BatchLedgerService.adjust(uow, uuid.uuid4(), 1, "Found stock")

    def test_zero_delta_rejected(self, db, product, make_batch):
        batch = make_batch(product, quantity=5)
        with pytest.raises(InvalidQuantityError):
            BatchLedgerService.adjust_stock(db, batch.id, 0, "Nothing")

    def test_adjust_stock_records_movement(self, db, product, make_batch, user):
        batch = make_batch(product, quantity=5)

        batch = BatchLedgerService.adjust_stock(db, batch.id, -2, "Breakage", performed_by=user.id)

        assert batch.quantity == 3
        last = _movements(db, batch)[0]
        assert last.movement_type == MovementType.ADJUSTMENT
        assert last.quantity_delta == -2
        assert last.quantity_after == 3
        assert last.reason == "Breakage"
        assert last.performed_by == user.id

    def test_failure_inside_unit_rolls_back_earlier_adjustments(self, db, product, make_batch):
        first = make_batch(product, quantity=5)
        second = make_batch(product, quantity=1)

        with pytest.raises(InsufficientStockError):
            with UnitOfWork(db) as uow:
                BatchLedgerService.adjust(uow, first.id, -5, "Move")
                BatchLedgerService.adjust(uow, second.id, -2, "Move")

        db.refresh(first)
        db.refresh(second)
        assert (first.quantity, second.quantity) == (5, 1)


class TestFindAvailable:

    def test_earliest_expiry_first_with_undated_last(self, db, branch, product, make_batch):
        today = date.today()
        late = make_batch(product, quantity=3, expiry_date=today + timedelta(days=300), batch_number="LATE")
        undated = make_batch(product, quantity=3, expiry_date=None, batch_number="NODATE")
        early = make_batch(product, quantity=3, expiry_date=today + timedelta(days=30), batch_number="EARLY")
        empty = make_batch(product, quantity=3, expiry_date=today + timedelta(days=1), batch_number="EMPTY")
        BatchLedgerService.adjust_stock(db, empty.id, -3, "Sold out")

        batches = BatchLedgerService.find_available(db, product.id, branch.id)

        assert [b.id for b in batches] == [early.id, late.id, undated.id]

    def test_same_expiry_breaks_ties_on_batch_number(self, db, branch, product, make_batch):
        expiry = date.today() + timedelta(days=60)
        b = make_batch(product, quantity=1, expiry_date=expiry, batch_number="B-2")
        a = make_batch(product, quantity=1, expiry_date=expiry, batch_number="B-1")

        assert [x.id for x in BatchLedgerService.find_available(db, product.id, branch.id)] == [a.id, b.id]

    def test_policy_is_swappable(self, db, branch, product, make_batch):
        today = date.today()
        early = make_batch(product, quantity=1, expiry_date=today + timedelta(days=10))
        late = make_batch(product, quantity=1, expiry_date=today + timedelta(days=20))

        def latest_first(batches):
            return list(reversed(earliest_expiry_first(batches)))

        batches = BatchLedgerService.find_available(db, product.id, branch.id, policy=latest_first)
        assert [b.id for b in batches] == [late.id, early.id]

    def test_available_quantity(self, db, branch, other_branch, product, make_batch):
        make_batch(product, quantity=4)
        make_batch(product, quantity=6)
        make_batch(product, quantity=50, at_branch=other_branch)

        assert BatchLedgerService.available_quantity(db, product.id, branch.id) == 10


class TestBatchMaintenance:

    def test_update_quantity_is_booked_as_adjustment(self, db, product, make_batch):
        batch = make_batch(product, quantity=10)

        batch = BatchLedgerService.update_batch(db, batch.id, quantity=7, selling_price=Decimal("6.50"))

        assert batch.quantity == 7
        assert batch.selling_price == Decimal("6.50")
        movement = _movements(db, batch)[0]
        assert movement.movement_type == MovementType.ADJUSTMENT
        assert movement.quantity_delta == -3

    def test_update_negative_quantity_rejected(self, db, product, make_batch):
        batch = make_batch(product, quantity=10)
        with pytest.raises(InvalidQuantityError):
            BatchLedgerService.update_batch(db, batch.id, quantity=-1)

    def test_delete_batch(self, db, product, make_batch):
        batch = make_batch(product, quantity=10)
        batch_id = batch.id

        BatchLedgerService.delete_batch(db, batch_id)

        assert db.query(Batch).filter(Batch.id == batch_id).first() is None
        assert db.query(StockMovement).filter(StockMovement.batch_id == batch_id).count() == 0

    def test_delete_batch_referenced_by_sale(self, db, product, make_batch, make_sale):
        batch = make_batch(product, quantity=10)
        make_sale((batch, 1))

        with pytest.raises(ConflictError):
            BatchLedgerService.delete_batch(db, batch.id)

    def test_list_batches_filters(self, db, branch, other_branch, product, make_product, make_batch):
        other_product = make_product("Ibuprofen")
        mine = make_batch(product, quantity=1)
        make_batch(other_product, quantity=1)
        make_batch(product, quantity=1, at_branch=other_branch)

        batches = BatchLedgerService.list_batches(db, branch_id=branch.id, product_id=product.id)
        assert [b.id for b in batches] == [mine.id]


class TestStockReports:

    def test_expiring_batches(self, db, branch, product, make_batch):
        today = date.today()
        soon = make_batch(product, quantity=2, expiry_date=today + timedelta(days=10))
        make_batch(product, quantity=2, expiry_date=today + timedelta(days=400))
        make_batch(product, quantity=2)

        expiring = BatchLedgerService.get_expiring_batches(db, days_threshold=90, branch_id=branch.id)
        assert [b.id for b in expiring] == [soon.id]

    def test_low_stock_products(self, db, branch, make_product, make_batch):
        low = make_product("Cetirizine", reorder_level=20)
        healthy = make_product("Vitamin C", reorder_level=5)
        missing = make_product("ORS Sachets", reorder_level=3)
        make_batch(low, quantity=8)
        make_batch(healthy, quantity=30)

        report = {row["product_id"]: row for row in BatchLedgerService.get_low_stock_products(db, branch_id=branch.id)}

        assert set(report) == {low.id, missing.id}
        assert report[low.id]["current_stock"] == 8
        assert report[low.id]["deficit"] == 12
        assert report[missing.id]["current_stock"] == 0
