"""
Document Numbering Service - date-stamped document numbers

Format: {PREFIX}-{YYYYMMDD}-{NNNN}, e.g. INV-20260412-0731. The suffix is
random; each candidate is checked against the owning table before use.
"""
import random
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from pharmaledger.config import settings
from pharmaledger.exceptions import ConflictError
from pharmaledger.models import Sale, InsuranceClaim, Prescription, StockTransfer


class DocumentService:
    """Service for generating unique document numbers"""

    @staticmethod
    def format_document_number(prefix: str, on_date: date, sequence: int) -> str:
        return f"{prefix}-{on_date.strftime('%Y%m%d')}-{sequence:04d}"

    @staticmethod
    def _next_number(db: Session, prefix: str, column, on_date: Optional[date] = None) -> str:
        """
        Draw random suffixes until one is free in ``column``.

        Raises ConflictError after DOCUMENT_NUMBER_ATTEMPTS collisions.
        """
        on_date = on_date or date.today()
        for _ in range(settings.DOCUMENT_NUMBER_ATTEMPTS):
            candidate = DocumentService.format_document_number(prefix, on_date, random.randint(0, 9999))
            taken = db.query(column).filter(column == candidate).first()
            if not taken:
                return candidate
        raise ConflictError(f"Could not allocate a free {prefix} number for {on_date.isoformat()}")

    @staticmethod
    def get_invoice_number(db: Session, on_date: Optional[date] = None) -> str:
        return DocumentService._next_number(db, settings.INVOICE_PREFIX, Sale.invoice_number, on_date)

    @staticmethod
    def get_claim_number(db: Session, on_date: Optional[date] = None) -> str:
        return DocumentService._next_number(db, settings.CLAIM_PREFIX, InsuranceClaim.claim_number, on_date)

    @staticmethod
    def get_prescription_number(db: Session, on_date: Optional[date] = None) -> str:
        return DocumentService._next_number(
            db, settings.PRESCRIPTION_PREFIX, Prescription.prescription_number, on_date
        )

    @staticmethod
    def get_transfer_number(db: Session, on_date: Optional[date] = None) -> str:
        return DocumentService._next_number(db, settings.TRANSFER_PREFIX, StockTransfer.transfer_number, on_date)
