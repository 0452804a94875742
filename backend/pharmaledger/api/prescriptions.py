"""
Prescriptions API - prescriptions, item edits, dispensing and cancellation
"""
from typing import List, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from pharmaledger.database import get_db
from pharmaledger.dependencies import get_current_user
from pharmaledger.models import User
from pharmaledger.schemas.prescription import (
    PrescriptionCreate,
    PrescriptionUpdate,
    PrescriptionResponse,
    PrescriptionItemCreate,
    PrescriptionItemUpdate,
    PrescriptionItemResponse,
    DispenseRequest,
)
from pharmaledger.services.prescription_service import PrescriptionService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=List[PrescriptionResponse])
def list_prescriptions(
    branch_id: Optional[UUID] = Query(None),
    patient_id: Optional[UUID] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return PrescriptionService.list_prescriptions(db, branch_id=branch_id, patient_id=patient_id, status=status_filter)


@router.post("", response_model=PrescriptionResponse, status_code=status.HTTP_201_CREATED)
def create_prescription(
    payload: PrescriptionCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return PrescriptionService.create_prescription(
        db,
        branch_id=payload.branch_id,
        patient_id=payload.patient_id,
        issued_by=payload.issued_by or user.id,
        items=payload.items,
        doctor_name=payload.doctor_name,
        hospital_name=payload.hospital_name,
        diagnosis=payload.diagnosis,
        external_id=payload.external_id,
        valid_until=payload.valid_until,
    )


@router.get("/{prescription_id}", response_model=PrescriptionResponse)
def get_prescription(prescription_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return PrescriptionService.get_prescription(db, prescription_id)


@router.put("/{prescription_id}", response_model=PrescriptionResponse)
def update_prescription(
    prescription_id: UUID,
    payload: PrescriptionUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return PrescriptionService.update_prescription(db, prescription_id, **payload.model_dump(exclude_unset=True))


@router.post("/{prescription_id}/items", response_model=PrescriptionItemResponse, status_code=status.HTTP_201_CREATED)
def add_prescription_item(
    prescription_id: UUID,
    payload: PrescriptionItemCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return PrescriptionService.add_item(db, prescription_id, **payload.model_dump())


@router.put("/items/{item_id}", response_model=PrescriptionItemResponse)
def update_prescription_item(
    item_id: UUID,
    payload: PrescriptionItemUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return PrescriptionService.update_item(db, item_id, **payload.model_dump(exclude_unset=True))


@router.delete("/items/{item_id}", response_model=PrescriptionResponse)
def remove_prescription_item(item_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Remove an undispensed item; returns the prescription with its re-derived status."""
    return PrescriptionService.remove_item(db, item_id)


@router.put("/{prescription_id}/cancel", response_model=PrescriptionResponse)
def cancel_prescription(prescription_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return PrescriptionService.cancel_prescription(db, prescription_id)


@router.post("/{prescription_id}/dispense", response_model=PrescriptionResponse)
def dispense_prescription(
    prescription_id: UUID,
    payload: DispenseRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return PrescriptionService.dispense_items(db, prescription_id, payload.items)
