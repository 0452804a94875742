"""
Database models for PharmaLedger
"""
from pharmaledger.database import Base

# Import all models
from .company import Pharmacy, Branch
from .user import User
from .product import Product
from .patient import Patient
from .inventory import Batch, StockMovement, MovementType
from .transfer import StockTransfer, StockTransferItem, TransferStatus
from .sale import Sale, SaleItem, PaymentMethod, PaymentStatus
from .prescription import Prescription, PrescriptionItem, PrescriptionStatus
from .insurance import (
    InsuranceProvider, InsurancePlan, PlanCoverageItem, PatientInsurance,
    InsuranceClaim, InsuranceClaimItem, InsuranceStatus, ClaimStatus,
)
from .subscription import SubscriptionPlan, Subscription, SubscriptionStatus
from .notification import Notification, NotificationType

__all__ = [
    "Base",
    "Pharmacy",
    "Branch",
    "User",
    "Product",
    "Patient",
    "Batch",
    "StockMovement",
    "MovementType",
    "StockTransfer",
    "StockTransferItem",
    "TransferStatus",
    "Sale",
    "SaleItem",
    "PaymentMethod",
    "PaymentStatus",
    "Prescription",
    "PrescriptionItem",
    "PrescriptionStatus",
    "InsuranceProvider",
    "InsurancePlan",
    "PlanCoverageItem",
    "PatientInsurance",
    "InsuranceClaim",
    "InsuranceClaimItem",
    "InsuranceStatus",
    "ClaimStatus",
    "SubscriptionPlan",
    "Subscription",
    "SubscriptionStatus",
    "Notification",
    "NotificationType",
]
