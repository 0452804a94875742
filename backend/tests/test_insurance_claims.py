"""
Coverage resolution and the insurance claim lifecycle
"""
import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest

from pharmaledger.exceptions import InvalidInputError, InvalidStateError, NotFoundError
from pharmaledger.models import ClaimStatus, Notification, NotificationType
from pharmaledger.schemas.insurance import ClaimItemAdjudication
from pharmaledger.services.insurance_service import InsuranceService, quantize_money


def _coverage(percentage, product_id=None, category=None):
    return SimpleNamespace(product_id=product_id, category=category, coverage_percentage=percentage)


class TestCoverageResolution:
    product_id = uuid.uuid4()

    def _resolve(self, default, overrides, category="ANTIBIOTIC"):
        plan = SimpleNamespace(coverage_percentage=default, coverage_items=overrides)
        product = SimpleNamespace(id=self.product_id, category=category)
        return InsuranceService.resolve_coverage_percentage(plan, product)

    def test_plan_default(self):
        assert self._resolve(Decimal("40"), []) == Decimal("40")

    def test_product_beats_category(self):
        overrides = [
            _coverage(Decimal("70"), category="ANTIBIOTIC"),
            _coverage(Decimal("90"), product_id=self.product_id),
        ]
        assert self._resolve(Decimal("40"), overrides) == Decimal("90")

    def test_category_beats_default(self):
        overrides = [_coverage(Decimal("70"), category="ANTIBIOTIC")]
        assert self._resolve(Decimal("40"), overrides) == Decimal("70")

    def test_other_category_ignored(self):
        overrides = [_coverage(Decimal("70"), category="VITAMIN")]
        assert self._resolve(Decimal("40"), overrides) == Decimal("40")

    def test_override_without_percentage_ignored(self):
        overrides = [_coverage(None, product_id=self.product_id)]
        assert self._resolve(Decimal("40"), overrides) == Decimal("40")

    def test_uncategorised_product_uses_default(self):
        overrides = [_coverage(Decimal("70"), category="ANTIBIOTIC")]
        assert self._resolve(Decimal("40"), overrides, category=None) == Decimal("40")

    def test_compute_coverage_rounds_half_up(self):
        assert InsuranceService.compute_coverage(Decimal("10.05"), Decimal("50")) == Decimal("5.03")
        assert quantize_money("2.344") == Decimal("2.34")


class TestClaimStatus:

    def test_approve_then_pay(self, db, insured_sale):
        claim = insured_sale.claim

        claim = InsuranceService.update_claim_status(db, claim.id, ClaimStatus.APPROVED, approved_by="Reviewer A")
        assert claim.status == ClaimStatus.APPROVED
        assert claim.approval_date is not None
        assert claim.approved_by == "Reviewer A"

        claim = InsuranceService.update_claim_status(
            db, claim.id, ClaimStatus.PAID, payment_reference="EFT-991"
        )
        assert claim.status == ClaimStatus.PAID
        assert claim.payment_date is not None
        assert claim.payment_reference == "EFT-991"

    def test_rejection_keeps_reason(self, db, insured_sale):
        claim = InsuranceService.update_claim_status(
            db, insured_sale.claim.id, ClaimStatus.REJECTED, rejection_reason="Not covered"
        )
        assert claim.rejection_reason == "Not covered"

    def test_cannot_pay_unreviewed_claim(self, db, insured_sale):
        with pytest.raises(InvalidStateError):
            InsuranceService.update_claim_status(db, insured_sale.claim.id, ClaimStatus.PAID)
        assert InsuranceService.get_claim(db, insured_sale.claim.id).status == ClaimStatus.SUBMITTED

    def test_cancelled_is_terminal(self, db, insured_sale):
        claim_id = insured_sale.claim.id
        InsuranceService.update_claim_status(db, claim_id, ClaimStatus.CANCELLED)
        with pytest.raises(InvalidStateError):
            InsuranceService.update_claim_status(db, claim_id, ClaimStatus.APPROVED)

    def test_unknown_status(self, db, insured_sale):
        with pytest.raises(InvalidInputError):
            InsuranceService.update_claim_status(db, insured_sale.claim.id, "LOST")

    def test_status_change_notifies_branch(self, db, insured_sale):
        InsuranceService.update_claim_status(db, insured_sale.claim.id, ClaimStatus.APPROVED)

        notification = db.query(Notification).filter(Notification.type == NotificationType.CLAIM_STATUS).one()
        assert notification.branch_id == insured_sale.branch_id
        assert ClaimStatus.APPROVED in notification.message


class TestClaimItems:

    def test_lower_amount_is_partial_approval(self, db, insured_sale):
        claim = insured_sale.claim
        line = claim.items[0]

        claim = InsuranceService.update_claim_items(db, claim.id, [
            ClaimItemAdjudication(id=line.id, approved_quantity=2, approved_amount=Decimal("30.00")),
        ])

        assert claim.status == ClaimStatus.PARTIALLY_APPROVED
        assert claim.covered_amount == Decimal("30.00")
        assert claim.items[0].approved_amount == Decimal("30.00")

    def test_missing_amount_falls_back_to_claimed(self, db, insured_sale):
        claim = insured_sale.claim
        line = claim.items[0]

        claim = InsuranceService.update_claim_items(db, claim.id, [
            ClaimItemAdjudication(id=line.id, approved_quantity=2),
        ])

        assert claim.status == ClaimStatus.APPROVED
        assert claim.covered_amount == Decimal("50.00")

    def test_foreign_item_rejected(self, db, insured_sale):
        with pytest.raises(InvalidInputError):
            InsuranceService.update_claim_items(db, insured_sale.claim.id, [
                ClaimItemAdjudication(id=uuid.uuid4(), approved_quantity=1),
            ])

    def test_paid_claim_is_closed(self, db, insured_sale):
        claim = insured_sale.claim
        InsuranceService.update_claim_status(db, claim.id, ClaimStatus.APPROVED)
        InsuranceService.update_claim_status(db, claim.id, ClaimStatus.PAID)

        with pytest.raises(InvalidStateError):
            InsuranceService.update_claim_items(db, claim.id, [
                ClaimItemAdjudication(id=claim.items[0].id, approved_quantity=1),
            ])


class TestClaimQueries:

    def test_get_and_list(self, db, insured_sale, provider):
        claim = InsuranceService.get_claim(db, insured_sale.claim.id)
        assert claim.sale_id == insured_sale.id
        assert claim.covered_amount == Decimal("50.00")
        assert claim.patient_responsibility == Decimal("50.00")

        assert [c.id for c in InsuranceService.list_claims(db, status=ClaimStatus.SUBMITTED)] == [claim.id]
        assert InsuranceService.list_claims(db, status=ClaimStatus.PAID) == []
        assert len(InsuranceService.list_claims(db, provider_id=provider.id)) == 1
        assert InsuranceService.list_claims(db, provider_id=uuid.uuid4()) == []

    def test_missing_claim(self, db):
        with pytest.raises(NotFoundError):
            InsuranceService.get_claim(db, uuid.uuid4())
