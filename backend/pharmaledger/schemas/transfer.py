"""
Stock transfer schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from uuid import UUID


class TransferItemCreate(BaseModel):
    """Requested line. With batch_id the quantity is taken from that batch, otherwise FEFO."""
    product_id: UUID
    quantity: int = Field(..., gt=0)
    batch_id: Optional[UUID] = None


class TransferCreate(BaseModel):
    from_branch_id: UUID
    to_branch_id: UUID
    items: List[TransferItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = None


class TransferItemResponse(BaseModel):
    id: UUID
    product_id: UUID
    quantity: int
    batch_id: Optional[UUID] = None
    batch_number: Optional[str] = None

    class Config:
        from_attributes = True


class TransferResponse(BaseModel):
    id: UUID
    transfer_number: Optional[str] = None
    from_branch_id: UUID
    to_branch_id: UUID
    status: str
    requested_by: UUID
    approved_by: Optional[UUID] = None
    notes: Optional[str] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: List[TransferItemResponse] = []

    class Config:
        from_attributes = True
