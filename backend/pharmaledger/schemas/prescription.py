"""
Prescription schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, date
from uuid import UUID


class PrescriptionItemCreate(BaseModel):
    product_id: UUID
    dosage: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    frequency: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None


class PrescriptionItemUpdate(BaseModel):
    dosage: Optional[str] = Field(None, min_length=1)
    quantity: Optional[int] = Field(None, gt=0)
    frequency: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None


class PrescriptionCreate(BaseModel):
    """Create prescription. issued_by defaults to the acting user."""
    branch_id: UUID
    patient_id: UUID
    issued_by: Optional[UUID] = None
    items: List[PrescriptionItemCreate] = Field(..., min_length=1)
    doctor_name: Optional[str] = None
    hospital_name: Optional[str] = None
    diagnosis: Optional[str] = None
    external_id: Optional[str] = None
    valid_until: Optional[date] = None


class PrescriptionUpdate(BaseModel):
    """Header fields only; status follows the items"""
    doctor_name: Optional[str] = None
    hospital_name: Optional[str] = None
    diagnosis: Optional[str] = None
    external_id: Optional[str] = None
    valid_until: Optional[date] = None


class DispenseItem(BaseModel):
    item_id: UUID
    quantity_to_dispense: int = Field(..., gt=0)
    batch_id: Optional[UUID] = None
    notes: Optional[str] = None


class DispenseRequest(BaseModel):
    items: List[DispenseItem] = Field(..., min_length=1)


class PrescriptionItemResponse(BaseModel):
    id: UUID
    product_id: UUID
    dosage: str
    frequency: Optional[str] = None
    duration: Optional[str] = None
    quantity: int
    instructions: Optional[str] = None
    dispensed: int
    batch_id: Optional[UUID] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class PrescriptionResponse(BaseModel):
    id: UUID
    prescription_number: str
    patient_id: UUID
    branch_id: UUID
    issued_by: UUID
    doctor_name: Optional[str] = None
    hospital_name: Optional[str] = None
    diagnosis: Optional[str] = None
    external_id: Optional[str] = None
    valid_until: Optional[date] = None
    status: str
    created_at: Optional[datetime] = None
    items: List[PrescriptionItemResponse] = []

    class Config:
        from_attributes = True
