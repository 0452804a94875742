"""
Onboarding API - pharmacy registration
"""
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from pharmaledger.database import get_db
from pharmaledger.schemas.onboarding import RegisterRequest, RegisterResponse
from pharmaledger.services.onboarding_service import OnboardingService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a pharmacy, its main branch and the first user.

    A failed free-trial subscription is reported in the response, not raised.
    """
    result = OnboardingService.register_pharmacy(
        db,
        name=payload.name,
        email=payload.email,
        role=payload.role,
        pharmacy_name=payload.pharmacy.name,
        pharmacy_address=payload.pharmacy.address,
        pharmacy_phone=payload.pharmacy.phone,
        pharmacy_email=payload.pharmacy.email,
    )
    trial = result["trial"]
    return RegisterResponse(
        message="Registration successful",
        pharmacy_id=result["pharmacy"].id,
        branch_id=result["branch"].id,
        user_id=result["user"].id,
        trial_subscription_created=trial.succeeded,
        trial_subscription_error=trial.error,
    )
