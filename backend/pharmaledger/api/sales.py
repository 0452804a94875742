"""
Sales API - create, cancel and settle sales
"""
from typing import List, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from pharmaledger.database import get_db
from pharmaledger.dependencies import get_current_user
from pharmaledger.models import User
from pharmaledger.schemas.sale import SaleCreate, SaleResponse, PaymentStatusUpdate
from pharmaledger.services.sale_service import SaleService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=List[SaleResponse])
def list_sales(
    branch_id: Optional[UUID] = Query(None),
    payment_status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return SaleService.list_sales(db, branch_id=branch_id, payment_status=payment_status)


@router.post("", response_model=SaleResponse, status_code=status.HTTP_201_CREATED)
def create_sale(
    payload: SaleCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Create a sale. Stock, prescription progress and the insurance claim are
    written together or not at all.
    """
    return SaleService.create_sale(
        db,
        branch_id=payload.branch_id,
        sold_by_id=payload.sold_by_id or user.id,
        items=payload.items,
        payment_method=payload.payment_method,
        customer=payload.customer,
        patient_id=payload.patient_id,
        prescription_id=payload.prescription_id,
        patient_insurance_id=payload.patient_insurance_id,
        payment_status=payload.payment_status,
    )


@router.get("/{sale_id}", response_model=SaleResponse)
def get_sale(sale_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return SaleService.get_sale(db, sale_id)


@router.put("/{sale_id}/cancel", response_model=SaleResponse)
def cancel_sale(sale_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return SaleService.cancel_sale(db, sale_id, performed_by=user.id)


@router.put("/{sale_id}/payment-status", response_model=SaleResponse)
def update_payment_status(
    sale_id: UUID,
    payload: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return SaleService.update_payment_status(db, sale_id, payload.payment_status)
