"""
Sales schemas
"""
from pydantic import BaseModel, Field
from typing import Literal, Optional, List
from datetime import datetime
from uuid import UUID
from decimal import Decimal

PaymentMethodLiteral = Literal["CASH", "CARD", "MOBILE_MONEY", "BANK_TRANSFER", "INSURANCE"]
PaymentStatusLiteral = Literal["PAID", "PENDING", "CANCELLED"]


class SaleItemCreate(BaseModel):
    """Sale line. unit_price defaults to the batch selling price."""
    batch_id: UUID
    quantity: int = Field(..., gt=0)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    discount: Decimal = Field(default=0, ge=0)


class SaleCreate(BaseModel):
    """Create sale request. sold_by_id defaults to the acting user."""
    branch_id: UUID
    sold_by_id: Optional[UUID] = None
    items: List[SaleItemCreate] = Field(..., min_length=1)
    payment_method: PaymentMethodLiteral
    payment_status: Optional[PaymentStatusLiteral] = None
    customer: Optional[str] = None
    patient_id: Optional[UUID] = None
    prescription_id: Optional[UUID] = None
    patient_insurance_id: Optional[UUID] = None


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatusLiteral


class SaleItemResponse(BaseModel):
    id: UUID
    batch_id: UUID
    quantity: int
    unit_price: Decimal
    discount: Decimal
    total: Decimal
    insurance_coverage: Optional[Decimal] = None

    class Config:
        from_attributes = True


class SaleResponse(BaseModel):
    id: UUID
    invoice_number: str
    branch_id: UUID
    sold_by_id: UUID
    customer: Optional[str] = None
    patient_id: Optional[UUID] = None
    prescription_id: Optional[UUID] = None
    patient_insurance_id: Optional[UUID] = None
    total: Decimal
    patient_paid: Decimal
    insurance_paid: Optional[Decimal] = None
    payment_method: str
    payment_status: str
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: List[SaleItemResponse] = []

    class Config:
        from_attributes = True
