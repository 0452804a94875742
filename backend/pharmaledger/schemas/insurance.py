"""
Insurance claim schemas
"""
from pydantic import BaseModel, Field
from typing import Literal, Optional, List
from datetime import datetime
from uuid import UUID
from decimal import Decimal

ClaimStatusLiteral = Literal["SUBMITTED", "APPROVED", "PARTIALLY_APPROVED", "REJECTED", "PAID", "CANCELLED"]


class ClaimStatusUpdate(BaseModel):
    status: ClaimStatusLiteral
    approved_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    payment_date: Optional[datetime] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None


class ClaimItemAdjudication(BaseModel):
    """Insurer decision on one claim line"""
    id: UUID
    approved_quantity: int = Field(..., ge=0)
    approved_amount: Optional[Decimal] = Field(None, ge=0)
    rejection_reason: Optional[str] = None


class ClaimItemsUpdate(BaseModel):
    items: List[ClaimItemAdjudication] = Field(..., min_length=1)


class ClaimItemResponse(BaseModel):
    id: UUID
    sale_item_id: UUID
    approved_quantity: int
    claimed_amount: Decimal
    approved_amount: Optional[Decimal] = None
    rejection_reason: Optional[str] = None

    class Config:
        from_attributes = True


class ClaimResponse(BaseModel):
    id: UUID
    claim_number: str
    sale_id: UUID
    provider_id: UUID
    patient_insurance_id: UUID
    total_amount: Decimal
    covered_amount: Decimal
    patient_responsibility: Decimal
    status: str
    submission_date: datetime
    approval_date: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    payment_date: Optional[datetime] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    items: List[ClaimItemResponse] = []

    class Config:
        from_attributes = True
