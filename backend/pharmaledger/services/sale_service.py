"""
Sale Service - sale/dispense transactions

create_sale validates everything up front, then in one unit of work writes
the sale, decrements each batch, advances the linked prescription and files
the insurance claim. cancel_sale reverses all of it exactly once.
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from pharmaledger.database import UnitOfWork
from pharmaledger.exceptions import (
    InsufficientStockError,
    InvalidInputError,
    InvalidQuantityError,
    InvalidStateError,
    NotFoundError,
    PrescriptionRequiredError,
)
from pharmaledger.models import (
    Batch,
    Branch,
    ClaimStatus,
    MovementType,
    Patient,
    PaymentMethod,
    PaymentStatus,
    Prescription,
    PrescriptionStatus,
    Product,
    Sale,
    SaleItem,
    User,
)
from pharmaledger.schemas.sale import SaleItemCreate
from pharmaledger.services.batch_ledger_service import BatchLedgerService
from pharmaledger.services.document_service import DocumentService
from pharmaledger.services.insurance_service import InsuranceService
from pharmaledger.services.notification_service import NotificationService
from pharmaledger.services.prescription_service import PrescriptionService
from pharmaledger.services.side_effects import run_non_critical

logger = logging.getLogger(__name__)


class SaleService:
    """Service for creating and reversing sales"""

    @staticmethod
    def get_sale(db: Session, sale_id: UUID) -> Sale:
        sale = db.query(Sale).options(
            selectinload(Sale.items)
        ).filter(Sale.id == sale_id).first()
        if not sale:
            raise NotFoundError("Sale", sale_id)
        return sale

    @staticmethod
    def list_sales(
        db: Session,
        branch_id: Optional[UUID] = None,
        payment_status: Optional[str] = None,
    ) -> List[Sale]:
        query = db.query(Sale).options(selectinload(Sale.items))
        if branch_id:
            query = query.filter(Sale.branch_id == branch_id)
        if payment_status:
            query = query.filter(Sale.payment_status == payment_status)
        return query.order_by(Sale.created_at.desc()).all()

    @staticmethod
    def create_sale(
        db: Session,
        branch_id: UUID,
        sold_by_id: UUID,
        items: List[SaleItemCreate],
        payment_method: str,
        customer: Optional[str] = None,
        patient_id: Optional[UUID] = None,
        prescription_id: Optional[UUID] = None,
        patient_insurance_id: Optional[UUID] = None,
        payment_status: Optional[str] = None,
    ) -> Sale:
        if payment_method not in PaymentMethod.ALL:
            raise InvalidInputError(f"Unknown payment method {payment_method}")
        if payment_status is not None and payment_status not in PaymentStatus.ALL:
            raise InvalidInputError(f"Unknown payment status {payment_status}")
        if not items:
            raise InvalidInputError("A sale needs at least one item")

        if not db.query(Branch).filter(Branch.id == branch_id).first():
            raise NotFoundError("Branch", branch_id)
        if not db.query(User).filter(User.id == sold_by_id).first():
            raise NotFoundError("User", sold_by_id)
        if patient_id and not db.query(Patient).filter(Patient.id == patient_id).first():
            raise NotFoundError("Patient", patient_id)

        prescription = None
        if prescription_id:
            prescription = db.query(Prescription).options(
                selectinload(Prescription.items)
            ).filter(Prescription.id == prescription_id).first()
            if not prescription:
                raise NotFoundError("Prescription", prescription_id)
            if prescription.status == PrescriptionStatus.FULFILLED:
                raise InvalidStateError("Prescription has already been fulfilled", prescription_id=prescription_id)
            if prescription.status == PrescriptionStatus.CANCELED:
                raise InvalidStateError("Prescription has been canceled", prescription_id=prescription_id)

        patient_insurance = None
        if patient_insurance_id:
            patient_insurance = InsuranceService.validate_patient_insurance(db, patient_insurance_id, patient_id)

        # Price every line before touching stock
        lines = []
        per_batch: Dict[UUID, int] = defaultdict(int)
        per_product: Dict[UUID, int] = defaultdict(int)
        total = Decimal("0")
        insurance_paid = Decimal("0")
        for item in items:
            if item.quantity <= 0:
                raise InvalidQuantityError("Sale quantity must be greater than zero", batch_id=item.batch_id)
            batch = db.query(Batch).options(
                selectinload(Batch.product)
            ).filter(Batch.id == item.batch_id).first()
            if not batch:
                raise NotFoundError("Batch", item.batch_id)
            if batch.branch_id != branch_id:
                raise InvalidInputError(
                    f"Batch {batch.batch_number} does not belong to the specified branch",
                    batch_id=item.batch_id,
                )
            per_batch[batch.id] += item.quantity
            if batch.quantity < per_batch[batch.id]:
                raise InsufficientStockError(
                    f"Insufficient quantity in batch {batch.batch_number}",
                    batch_id=batch.id,
                    available=batch.quantity,
                    requested=per_batch[batch.id],
                )
            product: Product = batch.product
            if product.requires_prescription and not prescription_id:
                raise PrescriptionRequiredError(f"Product {product.name} requires a prescription", product_id=product.id)

            unit_price = Decimal(str(item.unit_price if item.unit_price is not None else batch.selling_price))
            discount = Decimal(str(item.discount or 0))
            if unit_price < 0 or discount < 0:
                raise InvalidInputError("Unit price and discount cannot be negative", batch_id=item.batch_id)
            item_total = unit_price * item.quantity - discount
            if item_total < 0:
                raise InvalidInputError("Discount exceeds the line amount", batch_id=item.batch_id)

            coverage = None
            if patient_insurance:
                percentage = InsuranceService.resolve_coverage_percentage(patient_insurance.plan, product)
                coverage = InsuranceService.compute_coverage(item_total, percentage)
                insurance_paid += coverage

            total += item_total
            per_product[product.id] += item.quantity
            lines.append((item, unit_price, discount, item_total, coverage))

        if prescription:
            PrescriptionService.check_sale_dispense(prescription, per_product)

        patient_paid = total - insurance_paid if patient_insurance else total

        with UnitOfWork(db) as uow:
            sale = Sale(
                invoice_number=DocumentService.get_invoice_number(db),
                branch_id=branch_id,
                sold_by_id=sold_by_id,
                customer=customer,
                patient_id=patient_id,
                prescription_id=prescription_id,
                patient_insurance_id=patient_insurance_id,
                total=total,
                patient_paid=patient_paid,
                insurance_paid=insurance_paid if patient_insurance else None,
                payment_method=payment_method,
                payment_status=payment_status or PaymentStatus.PAID,
            )
            for item, unit_price, discount, item_total, coverage in lines:
                sale.items.append(SaleItem(
                    batch_id=item.batch_id,
                    quantity=item.quantity,
                    unit_price=unit_price,
                    discount=discount,
                    total=item_total,
                    insurance_coverage=coverage,
                ))
            db.add(sale)
            uow.flush()

            for sale_item in sale.items:
                BatchLedgerService.adjust(
                    uow, sale_item.batch_id, -sale_item.quantity, f"Sale {sale.invoice_number}",
                    movement_type=MovementType.SALE, reference=("sale", sale.id), performed_by=sold_by_id,
                )

            if prescription:
                locked = PrescriptionService.lock_prescription(db, prescription.id)
                PrescriptionService.check_sale_dispense(locked, per_product)
                PrescriptionService.apply_sale_dispense(uow, locked, per_product)

            if patient_insurance and insurance_paid > 0:
                InsuranceService.create_claim_for_sale(uow, sale, patient_insurance)

        db.refresh(sale)
        logger.info(f"Sale {sale.invoice_number} created at branch {branch_id}: total {sale.total}")

        for product_id in per_product:
            SaleService._notify_if_low_stock(db, branch_id, product_id)
        return sale

    @staticmethod
    def _notify_if_low_stock(db: Session, branch_id: UUID, product_id: UUID) -> None:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product or not product.reorder_level:
            return
        current_stock = BatchLedgerService.available_quantity(db, product_id, branch_id)
        if current_stock < product.reorder_level:
            run_non_critical(
                "low_stock_notification", NotificationService.low_stock, db, branch_id, product, current_stock
            )

    @staticmethod
    def cancel_sale(db: Session, sale_id: UUID, performed_by: Optional[UUID] = None) -> Sale:
        """Return the stock, roll back prescription progress and cancel the claim."""
        with UnitOfWork(db) as uow:
            sale = db.query(Sale).filter(Sale.id == sale_id).populate_existing().with_for_update().first()
            if not sale:
                raise NotFoundError("Sale", sale_id)
            # payment_status can be overwritten later; cancelled_at cannot
            if sale.cancelled_at is not None or sale.payment_status == PaymentStatus.CANCELLED:
                raise InvalidStateError(f"Sale {sale.invoice_number} is already cancelled", sale_id=sale_id)

            per_product: Dict[UUID, int] = defaultdict(int)
            for sale_item in sale.items:
                batch = BatchLedgerService.adjust(
                    uow, sale_item.batch_id, sale_item.quantity, f"Sale {sale.invoice_number} cancelled",
                    movement_type=MovementType.SALE_CANCELLED, reference=("sale", sale.id),
                    performed_by=performed_by,
                )
                per_product[batch.product_id] += sale_item.quantity

            if sale.prescription_id:
                prescription = PrescriptionService.lock_prescription(db, sale.prescription_id)
                PrescriptionService.revert_sale_dispense(uow, prescription, per_product)

            if sale.claim:
                # Direct write: sale cancellation overrides the claim workflow
                sale.claim.status = ClaimStatus.CANCELLED

            sale.payment_status = PaymentStatus.CANCELLED
            sale.cancelled_at = datetime.now(timezone.utc)

        db.refresh(sale)
        logger.info(f"Sale {sale.invoice_number} cancelled")
        run_non_critical("sale_cancelled_notification", NotificationService.sale_cancelled, db, sale)
        return sale

    @staticmethod
    def update_payment_status(db: Session, sale_id: UUID, payment_status: str) -> Sale:
        """Overwrite payment_status. No stock or prescription effects."""
        if payment_status not in PaymentStatus.ALL:
            raise InvalidInputError(f"Unknown payment status {payment_status}")
        with UnitOfWork(db):
            sale = db.query(Sale).filter(Sale.id == sale_id).populate_existing().with_for_update().first()
            if not sale:
                raise NotFoundError("Sale", sale_id)
            sale.payment_status = payment_status

        db.refresh(sale)
        return sale
