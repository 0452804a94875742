"""
Batch model - quantity-bearing unit of stock per product, branch and expiry
StockMovement - append-only audit of every batch quantity change
"""
from sqlalchemy import Column, String, Integer, Numeric, Date, ForeignKey, CheckConstraint, Boolean, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP
import uuid
from pharmaledger.database import Base


class MovementType:
    """Reason a batch quantity changed."""
    OPENING_BALANCE = "OPENING_BALANCE"
    ADJUSTMENT = "ADJUSTMENT"
    SALE = "SALE"
    SALE_CANCELLED = "SALE_CANCELLED"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"


class Batch(Base):
    """
    Batch - a priced, dated quantity of one product held at one branch.

    quantity is mutated only through BatchLedgerService.adjust (and set once
    on creation). Never deleted while a sale line references it.
    """
    __tablename__ = "batches"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id = Column(UUID(as_uuid=True), ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_number = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    expiry_date = Column(Date, nullable=True)
    cost_price = Column(Numeric(20, 4), nullable=False, default=0)
    selling_price = Column(Numeric(20, 4), nullable=False, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="batch_quantity_non_negative"),
        CheckConstraint("cost_price >= 0", name="batch_cost_price_non_negative"),
        CheckConstraint("selling_price >= 0", name="batch_selling_price_non_negative"),
    )

    # Relationships
    product = relationship("Product", back_populates="batches")
    branch = relationship("Branch")
    movements = relationship("StockMovement", back_populates="batch", cascade="all, delete-orphan")


class StockMovement(Base):
    """
    Audit log of batch quantity changes. One row per BatchLedgerService.adjust call
    (and one OPENING_BALANCE row per created batch).
    """
    __tablename__ = "stock_movements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    batch_id = Column(UUID(as_uuid=True), ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True)
    movement_type = Column(String(50), nullable=False)
    quantity_delta = Column(Integer, nullable=False)  # Positive = add, Negative = remove
    quantity_after = Column(Integer, nullable=False)
    reason = Column(Text)
    reference_type = Column(String(50))  # sale, stock_transfer
    reference_id = Column(UUID(as_uuid=True))
    performed_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    batch = relationship("Batch", back_populates="movements")
