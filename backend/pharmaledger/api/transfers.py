"""
Stock Transfers API - request, approve and complete inter-branch transfers
"""
from typing import List, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from pharmaledger.database import get_db
from pharmaledger.dependencies import get_current_user
from pharmaledger.models import User
from pharmaledger.schemas.transfer import TransferCreate, TransferResponse
from pharmaledger.services.transfer_service import TransferService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=List[TransferResponse])
def list_transfers(
    branch_id: Optional[UUID] = Query(None, description="Source or destination branch"),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return TransferService.list_transfers(db, branch_id=branch_id, status=status_filter)


@router.post("", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
def request_transfer(
    payload: TransferCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Request a transfer; stock moves only when it is completed."""
    return TransferService.request_transfer(
        db,
        from_branch_id=payload.from_branch_id,
        to_branch_id=payload.to_branch_id,
        items=payload.items,
        requested_by=user.id,
        notes=payload.notes,
    )


@router.get("/{transfer_id}", response_model=TransferResponse)
def get_transfer(transfer_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return TransferService.get_transfer(db, transfer_id)


@router.put("/{transfer_id}/approve", response_model=TransferResponse)
def approve_transfer(transfer_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return TransferService.approve_transfer(db, transfer_id, approved_by=user.id)


@router.put("/{transfer_id}/complete", response_model=TransferResponse)
def complete_transfer(transfer_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return TransferService.complete_transfer(db, transfer_id, performed_by=user.id)
