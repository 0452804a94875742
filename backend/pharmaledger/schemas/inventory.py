"""
Inventory schemas (batches, stock adjustments, availability)
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, date
from uuid import UUID
from decimal import Decimal


class BatchBase(BaseModel):
    """Batch base schema"""
    batch_number: str = Field(..., min_length=1, max_length=200)
    expiry_date: Optional[date] = None
    cost_price: Decimal = Field(default=0, ge=0)
    selling_price: Decimal = Field(default=0, ge=0)


class BatchCreate(BatchBase):
    """Receive a new batch at a branch"""
    product_id: UUID
    branch_id: UUID
    quantity: int = Field(..., gt=0)


class BatchUpdate(BaseModel):
    """Update batch details; a quantity change is recorded as an adjustment"""
    batch_number: Optional[str] = Field(None, min_length=1, max_length=200)
    expiry_date: Optional[date] = None
    cost_price: Optional[Decimal] = Field(None, ge=0)
    selling_price: Optional[Decimal] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class BatchResponse(BatchBase):
    """Batch response"""
    id: UUID
    product_id: UUID
    branch_id: UUID
    quantity: int
    is_active: Optional[bool] = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StockAdjustmentRequest(BaseModel):
    """Manual stock adjustment. Positive quantity_delta adds, negative removes."""
    batch_id: UUID
    quantity_delta: int = Field(..., description="Non-zero change in units")
    reason: str = Field(..., min_length=1)


class StockAvailability(BaseModel):
    """Available stock of a product at a branch, in FEFO order"""
    product_id: UUID
    branch_id: UUID
    total_quantity: int
    batches: List[BatchResponse]


class LowStockProduct(BaseModel):
    product_id: UUID
    product_name: str
    branch_id: Optional[UUID] = None
    current_stock: int
    reorder_level: int
    deficit: int
