"""
Onboarding Service - registers a pharmacy with its main branch and first user
"""
import logging
from datetime import date, timedelta
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from pharmaledger.config import settings
from pharmaledger.database import UnitOfWork
from pharmaledger.exceptions import ConflictError, InvalidStateError
from pharmaledger.models import (
    Branch,
    Pharmacy,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    User,
)
from pharmaledger.services.side_effects import run_non_critical

logger = logging.getLogger(__name__)

MAIN_BRANCH_NAME = "Main Branch"


class OnboardingService:
    """Service for pharmacy registration"""

    @staticmethod
    def register_pharmacy(
        db: Session,
        name: str,
        email: str,
        pharmacy_name: str,
        pharmacy_address: str,
        role: str = "ADMIN",
        pharmacy_phone: Optional[str] = None,
        pharmacy_email: Optional[str] = None,
    ) -> Dict:
        """
        Create pharmacy, main branch and user in one unit of work, then try to
        start a free trial.

        Returns dict with pharmacy, branch, user and the trial SideEffectResult.
        """
        if db.query(User).filter(User.email == email).first():
            raise ConflictError("User with this email already exists", email=email)

        with UnitOfWork(db) as uow:
            pharmacy = Pharmacy(
                name=pharmacy_name,
                address=pharmacy_address,
                phone=pharmacy_phone,
                email=pharmacy_email,
            )
            db.add(pharmacy)
            uow.flush()

            branch = Branch(
                pharmacy_id=pharmacy.id,
                name=MAIN_BRANCH_NAME,
                location=pharmacy_address,
                phone=pharmacy_phone,
                email=pharmacy_email,
            )
            db.add(branch)
            uow.flush()

            user = User(
                name=name,
                email=email,
                role=role,
                pharmacy_id=pharmacy.id,
                branch_id=branch.id,
            )
            db.add(user)

        logger.info(f"Registered pharmacy {pharmacy.id} with branch {branch.id} and user {user.id}")

        # Registration stands even if the trial cannot be started
        trial = run_non_critical(
            "free_trial_subscription", OnboardingService.create_free_trial_subscription, db, pharmacy.id
        )
        if trial.succeeded:
            logger.info(f"Free trial subscription created for pharmacy {pharmacy.id}")

        return {"pharmacy": pharmacy, "branch": branch, "user": user, "trial": trial}

    @staticmethod
    def create_free_trial_subscription(db: Session, pharmacy_id: UUID) -> Subscription:
        """TRIALING subscription on the active zero-price plan, once per pharmacy."""
        plan = db.query(SubscriptionPlan).filter(
            SubscriptionPlan.price == 0,
            SubscriptionPlan.is_active == True,
        ).first()
        if not plan:
            raise InvalidStateError("No active free trial plan found")

        existing = db.query(Subscription).filter(
            Subscription.pharmacy_id == pharmacy_id,
            Subscription.plan_id == plan.id,
            Subscription.status == SubscriptionStatus.TRIALING,
        ).first()
        if existing:
            raise InvalidStateError("Free trial already used for this pharmacy")

        today = date.today()
        with UnitOfWork(db):
            subscription = Subscription(
                pharmacy_id=pharmacy_id,
                plan_id=plan.id,
                status=SubscriptionStatus.TRIALING,
                start_date=today,
                trial_ends_at=today + timedelta(days=settings.TRIAL_PERIOD_DAYS),
            )
            db.add(subscription)
        db.refresh(subscription)
        return subscription
