"""
Insurance Service - coverage resolution and claims

Coverage for a product: the plan default, overridden by a coverage item for
that exact product, otherwise by one for the product's category. Overrides
without a percentage do not count.
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, FrozenSet, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from pharmaledger.config import settings
from pharmaledger.database import UnitOfWork
from pharmaledger.exceptions import InvalidInputError, InvalidStateError, NotFoundError
from pharmaledger.models import (
    ClaimStatus,
    InsuranceClaim,
    InsuranceClaimItem,
    InsurancePlan,
    InsuranceStatus,
    PatientInsurance,
    Product,
    Sale,
)
from pharmaledger.schemas.insurance import ClaimItemAdjudication
from pharmaledger.services.document_service import DocumentService
from pharmaledger.services.notification_service import NotificationService
from pharmaledger.services.side_effects import run_non_critical

logger = logging.getLogger(__name__)

CLAIM_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ClaimStatus.SUBMITTED: frozenset({
        ClaimStatus.APPROVED,
        ClaimStatus.PARTIALLY_APPROVED,
        ClaimStatus.REJECTED,
        ClaimStatus.CANCELLED,
    }),
    ClaimStatus.APPROVED: frozenset({ClaimStatus.PAID, ClaimStatus.CANCELLED}),
    ClaimStatus.PARTIALLY_APPROVED: frozenset({ClaimStatus.PAID, ClaimStatus.CANCELLED}),
    ClaimStatus.REJECTED: frozenset({ClaimStatus.PAID, ClaimStatus.CANCELLED}),
    ClaimStatus.PAID: frozenset({ClaimStatus.CANCELLED}),
    ClaimStatus.CANCELLED: frozenset(),
}

_APPROVAL_STATUSES = (ClaimStatus.APPROVED, ClaimStatus.PARTIALLY_APPROVED)


def quantize_money(amount) -> Decimal:
    return Decimal(str(amount)).quantize(settings.MONEY_QUANTUM, rounding=ROUND_HALF_UP)


class InsuranceService:
    """Service for insurance coverage and claims"""

    @staticmethod
    def resolve_coverage_percentage(plan: InsurancePlan, product: Product) -> Decimal:
        """Product override, then category override, then the plan default."""
        overrides = [c for c in plan.coverage_items if c.coverage_percentage is not None]
        for coverage in overrides:
            if coverage.product_id is not None and coverage.product_id == product.id:
                return Decimal(str(coverage.coverage_percentage))
        if product.category:
            for coverage in overrides:
                if coverage.product_id is None and coverage.category == product.category:
                    return Decimal(str(coverage.coverage_percentage))
        return Decimal(str(plan.coverage_percentage or 0))

    @staticmethod
    def compute_coverage(item_total: Decimal, percentage: Decimal) -> Decimal:
        return quantize_money(Decimal(str(item_total)) * Decimal(str(percentage)) / Decimal("100"))

    @staticmethod
    def validate_patient_insurance(
        db: Session,
        patient_insurance_id: UUID,
        patient_id: Optional[UUID],
    ) -> PatientInsurance:
        """Enrolment usable for a sale today: ACTIVE, not past its end date, same patient."""
        patient_insurance = db.query(PatientInsurance).options(
            selectinload(PatientInsurance.plan).selectinload(InsurancePlan.coverage_items)
        ).filter(PatientInsurance.id == patient_insurance_id).first()
        if not patient_insurance:
            raise NotFoundError("Patient insurance", patient_insurance_id)
        if patient_insurance.status != InsuranceStatus.ACTIVE:
            raise InvalidStateError("Patient insurance is not active", patient_insurance_id=patient_insurance_id)
        if patient_insurance.end_date and patient_insurance.end_date < date.today():
            raise InvalidStateError("Patient insurance has expired", patient_insurance_id=patient_insurance_id)
        if not patient_id or patient_insurance.patient_id != patient_id:
            raise InvalidStateError(
                "Patient insurance does not belong to the specified patient",
                patient_insurance_id=patient_insurance_id,
            )
        return patient_insurance

    @staticmethod
    def create_claim_for_sale(uow: UnitOfWork, sale: Sale, patient_insurance: PatientInsurance) -> InsuranceClaim:
        """SUBMITTED claim mirroring the sale, one claim line per sale line."""
        db = uow.db
        claim = InsuranceClaim(
            claim_number=DocumentService.get_claim_number(db),
            sale_id=sale.id,
            provider_id=patient_insurance.plan.provider_id,
            patient_insurance_id=patient_insurance.id,
            total_amount=sale.total,
            covered_amount=sale.insurance_paid or Decimal("0"),
            patient_responsibility=sale.patient_paid,
            status=ClaimStatus.SUBMITTED,
            submission_date=datetime.now(timezone.utc),
        )
        for sale_item in sale.items:
            claim.items.append(InsuranceClaimItem(
                sale_item_id=sale_item.id,
                approved_quantity=sale_item.quantity,
                claimed_amount=sale_item.insurance_coverage or Decimal("0"),
            ))
        db.add(claim)
        uow.flush()
        return claim

    @staticmethod
    def get_claim(db: Session, claim_id: UUID) -> InsuranceClaim:
        claim = db.query(InsuranceClaim).options(
            selectinload(InsuranceClaim.items)
        ).filter(InsuranceClaim.id == claim_id).first()
        if not claim:
            raise NotFoundError("Insurance claim", claim_id)
        return claim

    @staticmethod
    def list_claims(
        db: Session,
        status: Optional[str] = None,
        provider_id: Optional[UUID] = None,
    ) -> List[InsuranceClaim]:
        query = db.query(InsuranceClaim).options(selectinload(InsuranceClaim.items))
        if status:
            query = query.filter(InsuranceClaim.status == status)
        if provider_id:
            query = query.filter(InsuranceClaim.provider_id == provider_id)
        return query.order_by(InsuranceClaim.submission_date.desc()).all()

    @staticmethod
    def _lock_claim(db: Session, claim_id: UUID) -> InsuranceClaim:
        claim = db.query(InsuranceClaim).filter(
            InsuranceClaim.id == claim_id
        ).populate_existing().with_for_update().first()
        if not claim:
            raise NotFoundError("Insurance claim", claim_id)
        return claim

    @staticmethod
    def update_claim_status(
        db: Session,
        claim_id: UUID,
        status: str,
        approved_by: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        payment_date: Optional[datetime] = None,
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> InsuranceClaim:
        if status not in CLAIM_TRANSITIONS:
            raise InvalidInputError(f"Unknown claim status {status}")

        with UnitOfWork(db):
            claim = InsuranceService._lock_claim(db, claim_id)
            if status not in CLAIM_TRANSITIONS[claim.status]:
                raise InvalidStateError(
                    f"Cannot move claim {claim.claim_number} from {claim.status} to {status}",
                    claim_id=claim_id,
                )
            claim.status = status
            if status in _APPROVAL_STATUSES:
                claim.approval_date = datetime.now(timezone.utc)
                if approved_by:
                    claim.approved_by = approved_by
            if status == ClaimStatus.REJECTED and rejection_reason:
                claim.rejection_reason = rejection_reason
            if status == ClaimStatus.PAID:
                claim.payment_date = payment_date or datetime.now(timezone.utc)
                if payment_reference:
                    claim.payment_reference = payment_reference
            if notes:
                claim.notes = notes

        db.refresh(claim)
        logger.info(f"Claim {claim.claim_number} moved to {status}")
        run_non_critical("claim_status_notification", NotificationService.claim_status_changed, db, claim)
        return claim

    @staticmethod
    def update_claim_items(db: Session, claim_id: UUID, items: List[ClaimItemAdjudication]) -> InsuranceClaim:
        """
        Record the insurer's decision per line and recompute covered_amount.
        A lower total than before marks the claim PARTIALLY_APPROVED.
        """
        with UnitOfWork(db) as uow:
            claim = InsuranceService._lock_claim(db, claim_id)
            if claim.status in (ClaimStatus.PAID, ClaimStatus.CANCELLED):
                raise InvalidStateError(
                    f"Claim {claim.claim_number} is {claim.status} and cannot be adjusted",
                    claim_id=claim_id,
                )

            by_id = {item.id: item for item in claim.items}
            for update in items:
                if update.id not in by_id:
                    raise InvalidInputError(f"Claim item {update.id} is not part of this claim", claim_id=claim_id)

            for update in items:
                item = by_id[update.id]
                item.approved_quantity = update.approved_quantity
                item.approved_amount = update.approved_amount
                item.rejection_reason = update.rejection_reason

            previous_covered = Decimal(str(claim.covered_amount or 0))
            covered = sum(
                (
                    Decimal(str(item.approved_amount if item.approved_amount is not None else item.claimed_amount))
                    for item in claim.items
                ),
                Decimal("0"),
            )
            claim.covered_amount = quantize_money(covered)
            claim.status = (
                ClaimStatus.PARTIALLY_APPROVED if claim.covered_amount < previous_covered else ClaimStatus.APPROVED
            )
            claim.approval_date = datetime.now(timezone.utc)
            uow.flush()

        db.refresh(claim)
        logger.info(f"Claim {claim.claim_number} adjudicated: covered {claim.covered_amount}, {claim.status}")
        return claim
