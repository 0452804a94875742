"""
Batch Ledger Service - the only writer of Batch.quantity

Every stock change (manual adjustment, sale, cancellation, transfer) goes
through BatchLedgerService.adjust, which locks the batch row, refuses to
take it below zero and appends a StockMovement.
"""
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from pharmaledger.config import settings
from pharmaledger.database import UnitOfWork
from pharmaledger.exceptions import (
    ConflictError,
    InsufficientStockError,
    InvalidInputError,
    InvalidQuantityError,
    NotFoundError,
)
from pharmaledger.models import Batch, Branch, MovementType, Product, SaleItem, StockMovement

logger = logging.getLogger(__name__)

BatchOrderingPolicy = Callable[[Sequence[Batch]], List[Batch]]


def earliest_expiry_first(batches: Sequence[Batch]) -> List[Batch]:
    """FEFO: earliest expiry first, undated batches last, ties broken by batch number."""
    return sorted(
        batches,
        key=lambda b: (b.expiry_date is None, b.expiry_date or date.max, b.batch_number or ""),
    )


class BatchLedgerService:
    """Service for batch quantities and FEFO lookup"""

    @staticmethod
    def adjust(
        uow: UnitOfWork,
        batch_id: UUID,
        delta: int,
        reason: str,
        movement_type: str = MovementType.ADJUSTMENT,
        reference: Optional[Tuple[str, UUID]] = None,
        performed_by: Optional[UUID] = None,
    ) -> Batch:
        """
        Change a batch quantity by ``delta`` inside ``uow``.

        Raises:
            NotFoundError: batch does not exist
            InsufficientStockError: quantity would go below zero (batch unchanged)
        """
        if delta == 0:
            raise InvalidQuantityError("Stock adjustment must be non-zero", batch_id=batch_id)

        db = uow.db
        batch = BatchLedgerService.lock_batch(db, batch_id)

        new_quantity = batch.quantity + delta
        if new_quantity < 0:
            raise InsufficientStockError(
                f"Insufficient quantity in batch {batch.batch_number}: "
                f"{batch.quantity} available, {-delta} requested",
                batch_id=batch_id,
                available=batch.quantity,
                requested=-delta,
            )

        batch.quantity = new_quantity
        reference_type, reference_id = reference if reference else (None, None)
        db.add(StockMovement(
            batch_id=batch.id,
            movement_type=movement_type,
            quantity_delta=delta,
            quantity_after=new_quantity,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            performed_by=performed_by,
        ))
        # Locked reads repopulate from the database and would discard unflushed changes
        db.flush()
        return batch

    @staticmethod
    def lock_batch(db: Session, batch_id: UUID) -> Batch:
        """SELECT ... FOR UPDATE, overwriting any stale copy held by the session."""
        batch = db.query(Batch).filter(Batch.id == batch_id).populate_existing().with_for_update().first()
        if not batch:
            raise NotFoundError("Batch", batch_id)
        return batch

    @staticmethod
    def find_available(
        db: Session,
        product_id: UUID,
        branch_id: UUID,
        policy: BatchOrderingPolicy = earliest_expiry_first,
        lock: bool = False,
    ) -> List[Batch]:
        """Batches of a product at a branch with quantity > 0, ordered by ``policy``."""
        query = db.query(Batch).filter(
            Batch.product_id == product_id,
            Batch.branch_id == branch_id,
            Batch.quantity > 0,
        )
        if lock:
            query = query.populate_existing().with_for_update()
        return policy(query.all())

    @staticmethod
    def available_quantity(db: Session, product_id: UUID, branch_id: UUID) -> int:
        result = db.query(func.coalesce(func.sum(Batch.quantity), 0)).filter(
            Batch.product_id == product_id,
            Batch.branch_id == branch_id,
            Batch.quantity > 0,
        ).scalar()
        return int(result or 0)

    @staticmethod
    def get_batch(db: Session, batch_id: UUID) -> Batch:
        batch = db.query(Batch).filter(Batch.id == batch_id).first()
        if not batch:
            raise NotFoundError("Batch", batch_id)
        return batch

    @staticmethod
    def list_batches(
        db: Session,
        branch_id: Optional[UUID] = None,
        product_id: Optional[UUID] = None,
        in_stock_only: bool = False,
    ) -> List[Batch]:
        query = db.query(Batch)
        if branch_id:
            query = query.filter(Batch.branch_id == branch_id)
        if product_id:
            query = query.filter(Batch.product_id == product_id)
        if in_stock_only:
            query = query.filter(Batch.quantity > 0)
        return earliest_expiry_first(query.all())

    @staticmethod
    def create_batch(
        db: Session,
        product_id: UUID,
        branch_id: UUID,
        batch_number: str,
        quantity: int,
        expiry_date: Optional[date] = None,
        cost_price: Decimal = Decimal("0"),
        selling_price: Decimal = Decimal("0"),
        performed_by: Optional[UUID] = None,
    ) -> Batch:
        """Receive a new batch; the opening quantity is recorded as an OPENING_BALANCE movement."""
        if not db.query(Product).filter(Product.id == product_id).first():
            raise NotFoundError("Product", product_id)
        if not db.query(Branch).filter(Branch.id == branch_id).first():
            raise NotFoundError("Branch", branch_id)
        if quantity is None or quantity <= 0:
            raise InvalidQuantityError("Batch quantity must be greater than zero", quantity=quantity)
        if Decimal(str(cost_price)) < 0 or Decimal(str(selling_price)) < 0:
            raise InvalidInputError("Batch prices cannot be negative")
        if not batch_number or not batch_number.strip():
            raise InvalidInputError("Batch number is required")

        with UnitOfWork(db) as uow:
            batch = Batch(
                product_id=product_id,
                branch_id=branch_id,
                batch_number=batch_number.strip(),
                quantity=0,
                expiry_date=expiry_date,
                cost_price=cost_price,
                selling_price=selling_price,
            )
            db.add(batch)
            db.flush()
            BatchLedgerService.adjust(
                uow, batch.id, quantity, "Opening balance",
                movement_type=MovementType.OPENING_BALANCE, performed_by=performed_by,
            )

        db.refresh(batch)
        logger.info(f"Created batch {batch.batch_number} ({batch.id}) with {batch.quantity} units")
        return batch

    @staticmethod
    def update_batch(db: Session, batch_id: UUID, performed_by: Optional[UUID] = None, **fields) -> Batch:
        """
        Update batch details. A quantity change is applied as an ADJUSTMENT
        movement for the difference.
        """
        batch = BatchLedgerService.get_batch(db, batch_id)
        quantity = fields.pop("quantity", None)
        if quantity is not None and quantity < 0:
            raise InvalidQuantityError("Batch quantity cannot be negative", quantity=quantity)
        for price_field in ("cost_price", "selling_price"):
            if fields.get(price_field) is not None and Decimal(str(fields[price_field])) < 0:
                raise InvalidInputError(f"{price_field} cannot be negative")

        allowed = {"batch_number", "expiry_date", "cost_price", "selling_price", "is_active"}
        unknown = set(fields) - allowed
        if unknown:
            raise InvalidInputError(f"Unknown batch fields: {', '.join(sorted(unknown))}")

        with UnitOfWork(db) as uow:
            batch = BatchLedgerService.lock_batch(db, batch_id)
            for key, value in fields.items():
                if value is not None:
                    setattr(batch, key, value)
            db.flush()
            # Difference against the locked row, not the copy read before the lock
            if quantity is not None and quantity != batch.quantity:
                BatchLedgerService.adjust(
                    uow, batch.id, quantity - batch.quantity, "Batch quantity corrected",
                    performed_by=performed_by,
                )

        db.refresh(batch)
        return batch

    @staticmethod
    def delete_batch(db: Session, batch_id: UUID) -> None:
        batch = BatchLedgerService.get_batch(db, batch_id)
        referenced = db.query(SaleItem.id).filter(SaleItem.batch_id == batch_id).first()
        if referenced:
            raise ConflictError(
                f"Batch {batch.batch_number} is referenced by sales and cannot be deleted",
                batch_id=batch_id,
            )
        with UnitOfWork(db):
            db.delete(batch)
        logger.info(f"Deleted batch {batch_id}")

    @staticmethod
    def adjust_stock(
        db: Session,
        batch_id: UUID,
        delta: int,
        reason: str,
        performed_by: Optional[UUID] = None,
    ) -> Batch:
        """Manual stock adjustment in its own unit of work."""
        with UnitOfWork(db) as uow:
            batch = BatchLedgerService.adjust(uow, batch_id, delta, reason, performed_by=performed_by)
        db.refresh(batch)
        logger.info(f"Adjusted batch {batch_id} by {delta}: {reason}")
        return batch

    @staticmethod
    def get_expiring_batches(
        db: Session,
        days_threshold: Optional[int] = None,
        branch_id: Optional[UUID] = None,
    ) -> List[Batch]:
        """In-stock batches expiring within ``days_threshold`` days (already expired included)."""
        if days_threshold is None:
            days_threshold = settings.EXPIRY_WARNING_DAYS
        cutoff = date.today() + timedelta(days=days_threshold)
        query = db.query(Batch).filter(
            Batch.expiry_date.isnot(None),
            Batch.expiry_date <= cutoff,
            Batch.quantity > 0,
        )
        if branch_id:
            query = query.filter(Batch.branch_id == branch_id)
        return query.order_by(Batch.expiry_date.asc(), Batch.batch_number.asc()).all()

    @staticmethod
    def get_low_stock_products(db: Session, branch_id: Optional[UUID] = None) -> List[Dict]:
        """Active products whose summed batch quantity is below reorder_level."""
        stock_query = db.query(
            Batch.product_id.label("product_id"),
            func.sum(Batch.quantity).label("stock"),
        )
        if branch_id:
            stock_query = stock_query.filter(Batch.branch_id == branch_id)
        stock = stock_query.group_by(Batch.product_id).subquery()

        current_stock = func.coalesce(stock.c.stock, 0)
        rows = db.query(Product, current_stock.label("current_stock")).outerjoin(
            stock, stock.c.product_id == Product.id
        ).filter(
            Product.is_active == True,
            current_stock < Product.reorder_level,
        ).order_by(Product.name.asc()).all()

        return [
            {
                "product_id": product.id,
                "product_name": product.name,
                "branch_id": branch_id,
                "current_stock": int(stock_level),
                "reorder_level": product.reorder_level,
                "deficit": product.reorder_level - int(stock_level),
            }
            for product, stock_level in rows
        ]
