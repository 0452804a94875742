"""
Business logic services for PharmaLedger
"""
from .batch_ledger_service import BatchLedgerService, earliest_expiry_first
from .document_service import DocumentService
from .insurance_service import InsuranceService
from .notification_service import NotificationService
from .onboarding_service import OnboardingService
from .prescription_service import PrescriptionService, derive_prescription_status
from .sale_service import SaleService
from .side_effects import SideEffectResult, run_non_critical
from .transfer_service import TransferService

__all__ = [
    "BatchLedgerService",
    "earliest_expiry_first",
    "DocumentService",
    "InsuranceService",
    "NotificationService",
    "OnboardingService",
    "PrescriptionService",
    "derive_prescription_status",
    "SaleService",
    "SideEffectResult",
    "run_non_critical",
    "TransferService",
]
