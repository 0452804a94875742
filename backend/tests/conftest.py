"""
Pytest fixtures for the PharmaLedger test suite.

Provides:
- An in-memory SQLite database, recreated for every test
- Factories for branches, users, products, batches, patients and insurance
"""
import os

# Must be set before pharmaledger.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from pharmaledger.database import Base, SessionLocal, engine, init_db
from pharmaledger.models import (
    Branch,
    InsurancePlan,
    InsuranceProvider,
    InsuranceStatus,
    Patient,
    PatientInsurance,
    Pharmacy,
    PlanCoverageItem,
    Product,
    User,
)
from pharmaledger.schemas.sale import SaleItemCreate
from pharmaledger.services.batch_ledger_service import BatchLedgerService
from pharmaledger.services.sale_service import SaleService


@pytest.fixture
def db():
    init_db(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def pharmacy(db):
    pharmacy = Pharmacy(name="Test Pharmacy", address="1 Market Street")
    db.add(pharmacy)
    db.commit()
    return pharmacy


@pytest.fixture
def make_branch(db, pharmacy):
    def _make(name="Main Branch"):
        branch = Branch(pharmacy_id=pharmacy.id, name=name, location="Town")
        db.add(branch)
        db.commit()
        return branch
    return _make


@pytest.fixture
def branch(make_branch):
    return make_branch("Main Branch")


@pytest.fixture
def other_branch(make_branch):
    return make_branch("Second Branch")


@pytest.fixture
def user(db, pharmacy, branch):
    user = User(
        name="Pat Pharmacist",
        email=f"pharmacist-{uuid.uuid4().hex[:8]}@example.com",
        role="PHARMACIST",
        pharmacy_id=pharmacy.id,
        branch_id=branch.id,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def make_product(db):
    def _make(name="Paracetamol 500mg", category=None, requires_prescription=False, reorder_level=0):
        product = Product(
            name=name,
            category=category,
            requires_prescription=requires_prescription,
            reorder_level=reorder_level,
        )
        db.add(product)
        db.commit()
        return product
    return _make


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def make_batch(db, branch, user):
    counter = {"n": 0}

    def _make(product, quantity=10, expiry_date=None, batch_number=None,
              selling_price=Decimal("5.00"), cost_price=Decimal("3.00"), at_branch=None):
        counter["n"] += 1
        return BatchLedgerService.create_batch(
            db,
            product_id=product.id,
            branch_id=(at_branch or branch).id,
            batch_number=batch_number or f"B{counter['n']:03d}",
            quantity=quantity,
            expiry_date=expiry_date,
            cost_price=cost_price,
            selling_price=selling_price,
            performed_by=user.id,
        )
    return _make


@pytest.fixture
def patient(db):
    patient = Patient(name="Jane Doe", phone="0700000000", date_of_birth=date(1990, 1, 1))
    db.add(patient)
    db.commit()
    return patient


@pytest.fixture
def provider(db):
    provider = InsuranceProvider(name="Acme Health", code=f"ACME-{uuid.uuid4().hex[:6]}")
    db.add(provider)
    db.commit()
    return provider


@pytest.fixture
def make_plan(db, provider):
    def _make(coverage_percentage=Decimal("50"), overrides=()):
        plan = InsurancePlan(
            provider_id=provider.id,
            name="Standard",
            code="STD",
            coverage_percentage=coverage_percentage,
        )
        for override in overrides:
            plan.coverage_items.append(PlanCoverageItem(**override))
        db.add(plan)
        db.commit()
        return plan
    return _make


@pytest.fixture
def make_patient_insurance(db, patient):
    def _make(plan, status=InsuranceStatus.ACTIVE, end_date=None, for_patient=None):
        enrolment = PatientInsurance(
            patient_id=(for_patient or patient).id,
            plan_id=plan.id,
            member_number="M-001",
            status=status,
            start_date=date.today() - timedelta(days=30),
            end_date=end_date,
        )
        db.add(enrolment)
        db.commit()
        return enrolment
    return _make


@pytest.fixture
def make_sale(db, branch, user):
    """Sell (batch, quantity) pairs at the main branch."""
    def _make(*lines, payment_method="CASH", **kwargs):
        return SaleService.create_sale(
            db,
            branch_id=branch.id,
            sold_by_id=user.id,
            items=[SaleItemCreate(batch_id=batch.id, quantity=quantity) for batch, quantity in lines],
            payment_method=payment_method,
            **kwargs,
        )
    return _make


@pytest.fixture
def insured_sale(make_product, make_batch, make_plan, make_patient_insurance, make_sale, patient):
    """Sale of 2 x 50.00 under a 50% plan: covered 50.00, one claim line."""
    product = make_product("Amoxicillin 250mg")
    batch = make_batch(product, quantity=10, selling_price=Decimal("50.00"))
    plan = make_plan(Decimal("50"))
    enrolment = make_patient_insurance(plan)
    return make_sale(
        (batch, 2),
        payment_method="INSURANCE",
        patient_id=patient.id,
        patient_insurance_id=enrolment.id,
    )
