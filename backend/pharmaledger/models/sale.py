"""
Sales models. A sale is immutable after creation except for payment_status
and the cancellation stamp.
"""
from sqlalchemy import Column, String, Integer, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP
import uuid
from pharmaledger.database import Base


class PaymentMethod:
    CASH = "CASH"
    CARD = "CARD"
    MOBILE_MONEY = "MOBILE_MONEY"
    BANK_TRANSFER = "BANK_TRANSFER"
    INSURANCE = "INSURANCE"

    ALL = (CASH, CARD, MOBILE_MONEY, BANK_TRANSFER, INSURANCE)


class PaymentStatus:
    PAID = "PAID"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"

    ALL = (PAID, PENDING, CANCELLED)


class Sale(Base):
    """Sale (invoice) at one branch"""
    __tablename__ = "sales"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_number = Column(String(100), unique=True, nullable=False)  # INV-{YYYYMMDD}-{NNNN}
    branch_id = Column(UUID(as_uuid=True), ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True)
    sold_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    customer = Column(String(255))
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id", ondelete="SET NULL"), nullable=True)
    prescription_id = Column(UUID(as_uuid=True), ForeignKey("prescriptions.id", ondelete="SET NULL"), nullable=True)
    patient_insurance_id = Column(UUID(as_uuid=True), ForeignKey("patient_insurances.id", ondelete="SET NULL"), nullable=True)
    total = Column(Numeric(20, 4), nullable=False, default=0)
    patient_paid = Column(Numeric(20, 4), nullable=False, default=0)
    insurance_paid = Column(Numeric(20, 4), nullable=True)  # Null when no insurance was used
    payment_method = Column(String(50), nullable=False)  # CASH, CARD, MOBILE_MONEY, BANK_TRANSFER, INSURANCE
    payment_status = Column(String(50), nullable=False, default=PaymentStatus.PAID)  # PAID, PENDING, CANCELLED
    cancelled_at = Column(TIMESTAMP(timezone=True), nullable=True)  # Set once, by cancel_sale only
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    branch = relationship("Branch")
    sold_by = relationship("User")
    patient = relationship("Patient")
    prescription = relationship("Prescription", back_populates="sales")
    patient_insurance = relationship("PatientInsurance")
    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan")
    claim = relationship("InsuranceClaim", back_populates="sale", uselist=False)


class SaleItem(Base):
    """Sale line: quantity taken from one batch"""
    __tablename__ = "sale_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id = Column(UUID(as_uuid=True), ForeignKey("batches.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(20, 4), nullable=False)
    discount = Column(Numeric(20, 4), nullable=False, default=0)
    total = Column(Numeric(20, 4), nullable=False)
    insurance_coverage = Column(Numeric(20, 4), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("quantity > 0", name="sale_item_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="sale_item_unit_price_non_negative"),
        CheckConstraint("discount >= 0", name="sale_item_discount_non_negative"),
    )

    sale = relationship("Sale", back_populates="items")
    batch = relationship("Batch")
