"""
Two sessions against one file-backed database.

Each test lets a second session commit between the first session's reads
and its writes, then checks that the first session's locked re-read sees
the committed change instead of its own stale copy.
"""
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import sessionmaker

from pharmaledger.database import create_app_engine, init_db
from pharmaledger.exceptions import InsufficientStockError, InvalidStateError, LimitExceededError
from pharmaledger.models import (
    Branch,
    MovementType,
    Patient,
    Pharmacy,
    PrescriptionStatus,
    Product,
    Sale,
    StockMovement,
    User,
)
from pharmaledger.schemas.prescription import DispenseItem, PrescriptionItemCreate
from pharmaledger.schemas.sale import SaleItemCreate
from pharmaledger.services.batch_ledger_service import BatchLedgerService
from pharmaledger.services.document_service import DocumentService
from pharmaledger.services.prescription_service import PrescriptionService
from pharmaledger.services.sale_service import SaleService


@pytest.fixture
def sessions(tmp_path):
    engine = create_app_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    first, second = factory(), factory()
    try:
        yield first, second
    finally:
        first.close()
        second.close()
        engine.dispose()


@pytest.fixture
def seed(sessions):
    """Branch, user, patient and a batch of 10, created through the first session."""
    db, _ = sessions
    pharmacy = Pharmacy(name="Shared Pharmacy", address="1 Market Street")
    db.add(pharmacy)
    db.flush()
    branch = Branch(pharmacy_id=pharmacy.id, name="Main Branch")
    db.add(branch)
    db.flush()
    user = User(name="Sam Seller", email="sam@example.com", role="CASHIER", pharmacy_id=pharmacy.id, branch_id=branch.id)
    product = Product(name="Ibuprofen 400mg", reorder_level=0)
    patient = Patient(name="John Doe")
    db.add_all([user, product, patient])
    db.commit()

    batch = BatchLedgerService.create_batch(
        db, product.id, branch.id, "SHARED-1", 10, selling_price=Decimal("5.00"), performed_by=user.id
    )
    return SimpleNamespace(
        branch_id=branch.id,
        user_id=user.id,
        product_id=product.id,
        patient_id=patient.id,
        batch_id=batch.id,
    )


def _sell(db, seed, quantity, **kwargs):
    return SaleService.create_sale(
        db,
        branch_id=seed.branch_id,
        sold_by_id=seed.user_id,
        items=[SaleItemCreate(batch_id=seed.batch_id, quantity=quantity)],
        payment_method="CASH",
        **kwargs,
    )


def _commit_first_when_invoicing(monkeypatch, session, competing):
    """Run ``competing`` once, when ``session`` asks for its invoice number (after validation, before writes)."""
    original = DocumentService.get_invoice_number
    fired = []

    def get_invoice_number(db, on_date=None):
        if db is session and not fired:
            fired.append(True)
            competing()
        return original(db, on_date)

    monkeypatch.setattr(DocumentService, "get_invoice_number", staticmethod(get_invoice_number))
    return fired


@pytest.fixture
def prescription(sessions, seed):
    db, _ = sessions
    return PrescriptionService.create_prescription(
        db, seed.branch_id, seed.patient_id, seed.user_id,
        [PrescriptionItemCreate(product_id=seed.product_id, dosage="1 tab", quantity=5)],
    )


class TestConcurrentSales:

    def test_later_sale_sees_committed_decrement(self, monkeypatch, sessions, seed):
        first, second = sessions
        fired = _commit_first_when_invoicing(monkeypatch, first, lambda: _sell(second, seed, 8))

        with pytest.raises(InsufficientStockError):
            _sell(first, seed, 5)

        assert fired
        assert BatchLedgerService.get_batch(first, seed.batch_id).quantity == 2
        assert first.query(Sale).count() == 1

    def test_later_sale_fits_remaining_stock(self, monkeypatch, sessions, seed):
        first, second = sessions
        _commit_first_when_invoicing(monkeypatch, first, lambda: _sell(second, seed, 8))

        _sell(first, seed, 2)

        assert BatchLedgerService.get_batch(first, seed.batch_id).quantity == 0
        assert first.query(Sale).count() == 2

    def test_later_sale_sees_committed_dispense(self, monkeypatch, sessions, seed, prescription):
        first, second = sessions
        _commit_first_when_invoicing(
            monkeypatch, first, lambda: _sell(second, seed, 3, prescription_id=prescription.id)
        )

        with pytest.raises(LimitExceededError):
            _sell(first, seed, 3, prescription_id=prescription.id)

        refreshed = PrescriptionService.get_prescription(first, prescription.id)
        assert refreshed.items[0].dispensed == 3
        assert refreshed.status == PrescriptionStatus.PARTIALLY_FULFILLED
        assert BatchLedgerService.get_batch(first, seed.batch_id).quantity == 7

    def test_sale_cancelled_elsewhere_is_not_cancelled_again(self, sessions, seed):
        first, second = sessions
        sale = _sell(first, seed, 4)
        assert SaleService.get_sale(first, sale.id).cancelled_at is None

        SaleService.cancel_sale(second, sale.id)

        with pytest.raises(InvalidStateError):
            SaleService.cancel_sale(first, sale.id)
        assert BatchLedgerService.get_batch(first, seed.batch_id).quantity == 10


class TestConcurrentLedgerEdits:

    def test_dispense_sees_committed_dispense(self, sessions, seed, prescription):
        first, second = sessions
        item_id = PrescriptionService.get_prescription(first, prescription.id).items[0].id

        PrescriptionService.dispense_items(second, prescription.id, [DispenseItem(item_id=item_id, quantity_to_dispense=4)])

        with pytest.raises(LimitExceededError):
            PrescriptionService.dispense_items(
                first, prescription.id, [DispenseItem(item_id=item_id, quantity_to_dispense=2)]
            )
        assert PrescriptionService.get_prescription(first, prescription.id).items[0].dispensed == 4

    def test_quantity_correction_uses_current_quantity(self, sessions, seed):
        first, second = sessions
        assert BatchLedgerService.get_batch(first, seed.batch_id).quantity == 10

        BatchLedgerService.adjust_stock(second, seed.batch_id, -4, "Damaged")

        batch = BatchLedgerService.update_batch(first, seed.batch_id, quantity=8)

        assert batch.quantity == 8
        correction = first.query(StockMovement).filter(
            StockMovement.batch_id == seed.batch_id,
            StockMovement.movement_type == MovementType.ADJUSTMENT,
            StockMovement.reason == "Batch quantity corrected",
        ).one()
        assert correction.quantity_delta == 2
        assert correction.quantity_after == 8
