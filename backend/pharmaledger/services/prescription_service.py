"""
Prescription Service - prescriptions, their items and fulfilment status

Status is a projection of the items: it is re-derived after every item or
dispense change (derive_prescription_status) and only CANCELED is ever set
directly.
"""
import logging
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from pharmaledger.database import UnitOfWork
from pharmaledger.exceptions import (
    InvalidInputError,
    InvalidQuantityError,
    InvalidStateError,
    LimitExceededError,
    NotFoundError,
)
from pharmaledger.models import (
    Batch,
    Branch,
    Patient,
    Prescription,
    PrescriptionItem,
    PrescriptionStatus,
    Product,
    Sale,
    User,
)
from pharmaledger.schemas.prescription import DispenseItem, PrescriptionItemCreate
from pharmaledger.services.document_service import DocumentService

logger = logging.getLogger(__name__)

_LOCKED_FOR_EDIT = (PrescriptionStatus.FULFILLED, PrescriptionStatus.CANCELED)
_HEADER_FIELDS = {"doctor_name", "hospital_name", "diagnosis", "external_id", "valid_until"}
_ITEM_FIELDS = {"dosage", "frequency", "duration", "quantity", "instructions"}


def derive_prescription_status(items: Iterable[PrescriptionItem]) -> str:
    """
    FULFILLED when every item is fully dispensed, PARTIALLY_FULFILLED when
    anything was dispensed, else PENDING. No items means PENDING.
    """
    items = list(items)
    if not items:
        return PrescriptionStatus.PENDING
    if all(item.dispensed >= item.quantity for item in items):
        return PrescriptionStatus.FULFILLED
    if any(item.dispensed > 0 for item in items):
        return PrescriptionStatus.PARTIALLY_FULFILLED
    return PrescriptionStatus.PENDING


class PrescriptionService:
    """Service for prescriptions and dispensing"""

    @staticmethod
    def reconcile_prescription(uow: UnitOfWork, prescription: Prescription) -> str:
        """Write the derived status. Canceled prescriptions keep their status."""
        if prescription.status != PrescriptionStatus.CANCELED:
            prescription.status = derive_prescription_status(prescription.items)
            uow.flush()
        return prescription.status

    @staticmethod
    def get_prescription(db: Session, prescription_id: UUID) -> Prescription:
        prescription = db.query(Prescription).options(
            selectinload(Prescription.items)
        ).filter(Prescription.id == prescription_id).first()
        if not prescription:
            raise NotFoundError("Prescription", prescription_id)
        return prescription

    @staticmethod
    def list_prescriptions(
        db: Session,
        branch_id: Optional[UUID] = None,
        patient_id: Optional[UUID] = None,
        status: Optional[str] = None,
    ) -> List[Prescription]:
        query = db.query(Prescription).options(selectinload(Prescription.items))
        if branch_id:
            query = query.filter(Prescription.branch_id == branch_id)
        if patient_id:
            query = query.filter(Prescription.patient_id == patient_id)
        if status:
            query = query.filter(Prescription.status == status)
        return query.order_by(Prescription.created_at.desc()).all()

    @staticmethod
    def lock_prescription(db: Session, prescription_id: UUID) -> Prescription:
        """Lock the prescription row and reload it with its items, replacing stale copies."""
        prescription = db.query(Prescription).options(
            selectinload(Prescription.items)
        ).filter(
            Prescription.id == prescription_id
        ).populate_existing().with_for_update().first()
        if not prescription:
            raise NotFoundError("Prescription", prescription_id)
        return prescription

    @staticmethod
    def _get_item(db: Session, item_id: UUID) -> PrescriptionItem:
        item = db.query(PrescriptionItem).filter(PrescriptionItem.id == item_id).first()
        if not item:
            raise NotFoundError("Prescription item", item_id)
        return item

    @staticmethod
    def _ensure_editable(prescription: Prescription) -> None:
        if prescription.status in _LOCKED_FOR_EDIT:
            raise InvalidStateError(
                f"Prescription {prescription.prescription_number} is {prescription.status} and cannot be edited",
                prescription_id=prescription.id,
            )

    @staticmethod
    def create_prescription(
        db: Session,
        branch_id: UUID,
        patient_id: UUID,
        issued_by: UUID,
        items: List[PrescriptionItemCreate],
        doctor_name: Optional[str] = None,
        hospital_name: Optional[str] = None,
        diagnosis: Optional[str] = None,
        external_id: Optional[str] = None,
        valid_until: Optional[date] = None,
    ) -> Prescription:
        if not db.query(Branch).filter(Branch.id == branch_id).first():
            raise NotFoundError("Branch", branch_id)
        if not db.query(Patient).filter(Patient.id == patient_id).first():
            raise NotFoundError("Patient", patient_id)
        if not db.query(User).filter(User.id == issued_by).first():
            raise NotFoundError("User", issued_by)
        if not items:
            raise InvalidInputError("A prescription needs at least one item")

        seen = set()
        for item in items:
            if item.product_id in seen:
                raise InvalidInputError("Each product may appear only once per prescription", product_id=item.product_id)
            seen.add(item.product_id)
            if item.quantity <= 0:
                raise InvalidQuantityError("Prescribed quantity must be greater than zero", product_id=item.product_id)
            if not db.query(Product).filter(Product.id == item.product_id).first():
                raise NotFoundError("Product", item.product_id)

        with UnitOfWork(db):
            prescription = Prescription(
                prescription_number=DocumentService.get_prescription_number(db),
                branch_id=branch_id,
                patient_id=patient_id,
                issued_by=issued_by,
                doctor_name=doctor_name,
                hospital_name=hospital_name,
                diagnosis=diagnosis,
                external_id=external_id,
                valid_until=valid_until,
                status=PrescriptionStatus.PENDING,
            )
            for item in items:
                prescription.items.append(PrescriptionItem(
                    product_id=item.product_id,
                    dosage=item.dosage,
                    frequency=item.frequency,
                    duration=item.duration,
                    quantity=item.quantity,
                    instructions=item.instructions,
                    dispensed=0,
                ))
            db.add(prescription)

        db.refresh(prescription)
        logger.info(f"Prescription {prescription.prescription_number} created for patient {patient_id}")
        return prescription

    @staticmethod
    def update_prescription(db: Session, prescription_id: UUID, **fields) -> Prescription:
        """Update header fields. Status follows the items and is rejected here."""
        if "status" in fields:
            raise InvalidInputError("Prescription status cannot be set directly")
        unknown = set(fields) - _HEADER_FIELDS
        if unknown:
            raise InvalidInputError(f"Unknown prescription fields: {', '.join(sorted(unknown))}")

        with UnitOfWork(db):
            prescription = PrescriptionService.lock_prescription(db, prescription_id)
            for key, value in fields.items():
                setattr(prescription, key, value)

        db.refresh(prescription)
        return prescription

    @staticmethod
    def add_item(
        db: Session,
        prescription_id: UUID,
        product_id: UUID,
        dosage: str,
        quantity: int,
        frequency: Optional[str] = None,
        duration: Optional[str] = None,
        instructions: Optional[str] = None,
    ) -> PrescriptionItem:
        if quantity is None or quantity <= 0:
            raise InvalidQuantityError("Prescribed quantity must be greater than zero")
        if not db.query(Product).filter(Product.id == product_id).first():
            raise NotFoundError("Product", product_id)

        with UnitOfWork(db) as uow:
            prescription = PrescriptionService.lock_prescription(db, prescription_id)
            PrescriptionService._ensure_editable(prescription)
            if any(existing.product_id == product_id for existing in prescription.items):
                raise InvalidInputError("Product is already on this prescription", product_id=product_id)

            item = PrescriptionItem(
                product_id=product_id,
                dosage=dosage,
                frequency=frequency,
                duration=duration,
                quantity=quantity,
                instructions=instructions,
                dispensed=0,
            )
            prescription.items.append(item)
            uow.flush()
            PrescriptionService.reconcile_prescription(uow, prescription)

        db.refresh(item)
        return item

    @staticmethod
    def update_item(db: Session, item_id: UUID, **fields) -> PrescriptionItem:
        unknown = set(fields) - _ITEM_FIELDS
        if unknown:
            raise InvalidInputError(f"Unknown prescription item fields: {', '.join(sorted(unknown))}")
        quantity = fields.get("quantity")
        if quantity is not None and quantity <= 0:
            raise InvalidQuantityError("Prescribed quantity must be greater than zero")

        item = PrescriptionService._get_item(db, item_id)
        with UnitOfWork(db) as uow:
            prescription = PrescriptionService.lock_prescription(db, item.prescription_id)
            PrescriptionService._ensure_editable(prescription)
            if quantity is not None and quantity < item.dispensed:
                raise InvalidStateError(
                    f"Quantity {quantity} is below the {item.dispensed} units already dispensed",
                    item_id=item_id,
                )
            for key, value in fields.items():
                if value is not None:
                    setattr(item, key, value)
            uow.flush()
            PrescriptionService.reconcile_prescription(uow, prescription)

        db.refresh(item)
        return item

    @staticmethod
    def remove_item(db: Session, item_id: UUID) -> Prescription:
        item = PrescriptionService._get_item(db, item_id)
        with UnitOfWork(db) as uow:
            prescription = PrescriptionService.lock_prescription(db, item.prescription_id)
            PrescriptionService._ensure_editable(prescription)
            if item.dispensed > 0:
                raise InvalidStateError("A dispensed prescription item cannot be removed", item_id=item_id)
            prescription.items.remove(item)
            uow.flush()
            PrescriptionService.reconcile_prescription(uow, prescription)

        db.refresh(prescription)
        return prescription

    @staticmethod
    def cancel_prescription(db: Session, prescription_id: UUID) -> Prescription:
        with UnitOfWork(db):
            prescription = PrescriptionService.lock_prescription(db, prescription_id)
            if prescription.status == PrescriptionStatus.CANCELED:
                raise InvalidStateError("Prescription is already canceled", prescription_id=prescription_id)
            if db.query(Sale.id).filter(Sale.prescription_id == prescription_id).first():
                raise InvalidStateError(
                    "Prescription has sales against it and cannot be canceled",
                    prescription_id=prescription_id,
                )
            prescription.status = PrescriptionStatus.CANCELED

        db.refresh(prescription)
        logger.info(f"Prescription {prescription.prescription_number} canceled")
        return prescription

    @staticmethod
    def dispense_items(db: Session, prescription_id: UUID, items: List[DispenseItem]) -> Prescription:
        """
        Record dispensed quantities against prescription items. Every entry is
        checked before any is applied.
        """
        if not items:
            raise InvalidInputError("Nothing to dispense")

        with UnitOfWork(db) as uow:
            prescription = PrescriptionService.lock_prescription(db, prescription_id)
            if prescription.status == PrescriptionStatus.CANCELED:
                raise InvalidStateError("Cannot dispense a canceled prescription", prescription_id=prescription_id)

            by_id = {item.id: item for item in prescription.items}
            requested: Dict[UUID, int] = defaultdict(int)
            for entry in items:
                if entry.item_id not in by_id:
                    raise NotFoundError("Prescription item", entry.item_id)
                if entry.quantity_to_dispense <= 0:
                    raise InvalidQuantityError("Dispensed quantity must be greater than zero", item_id=entry.item_id)
                if entry.batch_id and not db.query(Batch).filter(Batch.id == entry.batch_id).first():
                    raise NotFoundError("Batch", entry.batch_id)
                requested[entry.item_id] += entry.quantity_to_dispense

            for item_id, quantity in requested.items():
                item = by_id[item_id]
                if item.dispensed + quantity > item.quantity:
                    raise LimitExceededError(
                        f"Dispensing {quantity} would exceed the prescribed quantity "
                        f"({item.dispensed} of {item.quantity} already dispensed)",
                        item_id=item_id,
                    )

            for entry in items:
                item = by_id[entry.item_id]
                item.dispensed += entry.quantity_to_dispense
                if entry.batch_id:
                    item.batch_id = entry.batch_id
                if entry.notes:
                    item.notes = entry.notes
            uow.flush()
            PrescriptionService.reconcile_prescription(uow, prescription)

        db.refresh(prescription)
        logger.info(f"Dispensed against prescription {prescription.prescription_number}: status {prescription.status}")
        return prescription

    # Sale hooks: called by SaleService inside its unit of work

    @staticmethod
    def check_sale_dispense(prescription: Prescription, quantities: Dict[UUID, int]) -> None:
        """LimitExceededError if any product quantity would overrun its prescription item."""
        for item in prescription.items:
            sold = quantities.get(item.product_id, 0)
            if sold and item.dispensed + sold > item.quantity:
                raise LimitExceededError(
                    f"Sale of {sold} units exceeds the prescribed quantity "
                    f"({item.dispensed} of {item.quantity} already dispensed)",
                    prescription_id=prescription.id,
                    product_id=item.product_id,
                )

    @staticmethod
    def apply_sale_dispense(uow: UnitOfWork, prescription: Prescription, quantities: Dict[UUID, int]) -> str:
        for item in prescription.items:
            sold = quantities.get(item.product_id, 0)
            if sold:
                item.dispensed += sold
        uow.flush()
        return PrescriptionService.reconcile_prescription(uow, prescription)

    @staticmethod
    def revert_sale_dispense(uow: UnitOfWork, prescription: Prescription, quantities: Dict[UUID, int]) -> str:
        for item in prescription.items:
            sold = quantities.get(item.product_id, 0)
            if sold:
                item.dispensed = max(0, item.dispensed - sold)
        uow.flush()
        return PrescriptionService.reconcile_prescription(uow, prescription)
