"""
Inventory API - batches, stock adjustments, availability, expiry and low stock
"""
from typing import List, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from pharmaledger.database import get_db
from pharmaledger.dependencies import get_current_user
from pharmaledger.models import User
from pharmaledger.schemas.inventory import (
    BatchCreate,
    BatchUpdate,
    BatchResponse,
    StockAdjustmentRequest,
    StockAvailability,
    LowStockProduct,
)
from pharmaledger.services.batch_ledger_service import BatchLedgerService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/batches", response_model=List[BatchResponse])
def list_batches(
    branch_id: Optional[UUID] = Query(None),
    product_id: Optional[UUID] = Query(None),
    in_stock_only: bool = Query(False),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List batches in FEFO order; filter by branch and product."""
    return BatchLedgerService.list_batches(db, branch_id=branch_id, product_id=product_id, in_stock_only=in_stock_only)


@router.post("/batches", response_model=BatchResponse, status_code=status.HTTP_201_CREATED)
def create_batch(
    payload: BatchCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return BatchLedgerService.create_batch(
        db,
        product_id=payload.product_id,
        branch_id=payload.branch_id,
        batch_number=payload.batch_number,
        quantity=payload.quantity,
        expiry_date=payload.expiry_date,
        cost_price=payload.cost_price,
        selling_price=payload.selling_price,
        performed_by=user.id,
    )


@router.get("/batches/{batch_id}", response_model=BatchResponse)
def get_batch(batch_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return BatchLedgerService.get_batch(db, batch_id)


@router.put("/batches/{batch_id}", response_model=BatchResponse)
def update_batch(
    batch_id: UUID,
    payload: BatchUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Update batch details; a new quantity is booked as an adjustment."""
    fields = payload.model_dump(exclude_unset=True)
    return BatchLedgerService.update_batch(db, batch_id, performed_by=user.id, **fields)


@router.delete("/batches/{batch_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_batch(batch_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    BatchLedgerService.delete_batch(db, batch_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/adjust-stock", response_model=BatchResponse)
def adjust_stock(
    payload: StockAdjustmentRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return BatchLedgerService.adjust_stock(
        db, payload.batch_id, payload.quantity_delta, payload.reason, performed_by=user.id
    )


@router.get("/available", response_model=StockAvailability)
def get_available_stock(
    product_id: UUID = Query(...),
    branch_id: UUID = Query(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Batches that can be sold or transferred, earliest expiry first."""
    batches = BatchLedgerService.find_available(db, product_id, branch_id)
    return StockAvailability(
        product_id=product_id,
        branch_id=branch_id,
        total_quantity=sum(b.quantity for b in batches),
        batches=[BatchResponse.model_validate(b) for b in batches],
    )


@router.get("/expiring", response_model=List[BatchResponse])
def get_expiring_batches(
    days: Optional[int] = Query(None, ge=0, description="Defaults to EXPIRY_WARNING_DAYS"),
    branch_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return BatchLedgerService.get_expiring_batches(db, days_threshold=days, branch_id=branch_id)


@router.get("/low-stock", response_model=List[LowStockProduct])
def get_low_stock(
    branch_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return BatchLedgerService.get_low_stock_products(db, branch_id=branch_id)
