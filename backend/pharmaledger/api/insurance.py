"""
Insurance API - claims generated from sales
"""
from typing import List, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pharmaledger.database import get_db
from pharmaledger.dependencies import get_current_user
from pharmaledger.models import User
from pharmaledger.schemas.insurance import ClaimResponse, ClaimStatusUpdate, ClaimItemsUpdate
from pharmaledger.services.insurance_service import InsuranceService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/claims", response_model=List[ClaimResponse])
def list_claims(
    status_filter: Optional[str] = Query(None, alias="status"),
    provider_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return InsuranceService.list_claims(db, status=status_filter, provider_id=provider_id)


@router.get("/claims/{claim_id}", response_model=ClaimResponse)
def get_claim(claim_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return InsuranceService.get_claim(db, claim_id)


@router.put("/claims/{claim_id}/status", response_model=ClaimResponse)
def update_claim_status(
    claim_id: UUID,
    payload: ClaimStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return InsuranceService.update_claim_status(db, claim_id, **payload.model_dump())


@router.put("/claims/{claim_id}/items", response_model=ClaimResponse)
def update_claim_items(
    claim_id: UUID,
    payload: ClaimItemsUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Record the insurer's per-line decision and recompute the covered amount."""
    return InsuranceService.update_claim_items(db, claim_id, payload.items)
