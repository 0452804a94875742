"""
Prescription models. Prescription.status is a projection of its items'
dispensed quantities and is only written by PrescriptionService.
"""
from sqlalchemy import Column, String, Integer, Date, ForeignKey, Text, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP
import uuid
from pharmaledger.database import Base


class PrescriptionStatus:
    PENDING = "PENDING"
    PARTIALLY_FULFILLED = "PARTIALLY_FULFILLED"
    FULFILLED = "FULFILLED"
    CANCELED = "CANCELED"


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    prescription_number = Column(String(100), unique=True, nullable=False)  # RX-{YYYYMMDD}-{NNNN}
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    branch_id = Column(UUID(as_uuid=True), ForeignKey("branches.id", ondelete="CASCADE"), nullable=False)
    issued_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    doctor_name = Column(String(255))
    hospital_name = Column(String(255))
    diagnosis = Column(Text)
    external_id = Column(String(100))  # Reference from the prescribing facility
    valid_until = Column(Date)
    status = Column(String(50), nullable=False, default=PrescriptionStatus.PENDING)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="prescriptions")
    branch = relationship("Branch")
    items = relationship("PrescriptionItem", back_populates="prescription", cascade="all, delete-orphan")
    sales = relationship("Sale", back_populates="prescription")


class PrescriptionItem(Base):
    __tablename__ = "prescription_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    prescription_id = Column(UUID(as_uuid=True), ForeignKey("prescriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=False)
    dosage = Column(String(255), nullable=False)
    frequency = Column(String(255))
    duration = Column(String(255))
    quantity = Column(Integer, nullable=False)
    instructions = Column(Text)
    dispensed = Column(Integer, nullable=False, default=0)
    batch_id = Column(UUID(as_uuid=True), ForeignKey("batches.id", ondelete="SET NULL"), nullable=True)  # Last batch dispensed from
    notes = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("quantity > 0", name="prescription_item_quantity_positive"),
        CheckConstraint("dispensed >= 0", name="prescription_item_dispensed_non_negative"),
        CheckConstraint("dispensed <= quantity", name="prescription_item_dispensed_within_quantity"),
    )

    prescription = relationship("Prescription", back_populates="items")
    product = relationship("Product")
