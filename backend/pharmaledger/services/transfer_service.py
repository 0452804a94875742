"""
Transfer Service - inter-branch stock transfers

PENDING --approve--> APPROVED --complete--> COMPLETED

Stock only moves at completion: source batches are consumed (the targeted
batch, or FEFO across the source branch) and each slice is merged into a
destination batch with the same batch number and expiry, or a new one.
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from pharmaledger.database import UnitOfWork
from pharmaledger.exceptions import (
    InsufficientStockError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from pharmaledger.models import (
    Batch,
    Branch,
    MovementType,
    Product,
    StockTransfer,
    StockTransferItem,
    TransferStatus,
    User,
)
from pharmaledger.schemas.transfer import TransferItemCreate
from pharmaledger.services.batch_ledger_service import BatchLedgerService
from pharmaledger.services.document_service import DocumentService
from pharmaledger.services.notification_service import NotificationService
from pharmaledger.services.side_effects import run_non_critical

logger = logging.getLogger(__name__)


class TransferService:
    """Service for the stock transfer workflow"""

    @staticmethod
    def get_transfer(db: Session, transfer_id: UUID) -> StockTransfer:
        transfer = db.query(StockTransfer).options(
            selectinload(StockTransfer.items)
        ).filter(StockTransfer.id == transfer_id).first()
        if not transfer:
            raise NotFoundError("Stock transfer", transfer_id)
        return transfer

    @staticmethod
    def list_transfers(
        db: Session,
        branch_id: Optional[UUID] = None,
        status: Optional[str] = None,
    ) -> List[StockTransfer]:
        query = db.query(StockTransfer).options(selectinload(StockTransfer.items))
        if branch_id:
            query = query.filter(or_(
                StockTransfer.from_branch_id == branch_id,
                StockTransfer.to_branch_id == branch_id,
            ))
        if status:
            query = query.filter(StockTransfer.status == status)
        return query.order_by(StockTransfer.created_at.desc()).all()

    @staticmethod
    def request_transfer(
        db: Session,
        from_branch_id: UUID,
        to_branch_id: UUID,
        items: List[TransferItemCreate],
        requested_by: UUID,
        notes: Optional[str] = None,
    ) -> StockTransfer:
        """
        Create a PENDING transfer after checking the source branch can cover
        every line. No stock changes here.
        """
        if from_branch_id == to_branch_id:
            raise InvalidInputError("Source and destination branches must be different")
        for branch_id in (from_branch_id, to_branch_id):
            if not db.query(Branch).filter(Branch.id == branch_id).first():
                raise NotFoundError("Branch", branch_id)
        if not db.query(User).filter(User.id == requested_by).first():
            raise NotFoundError("User", requested_by)
        if not items:
            raise InvalidInputError("A transfer needs at least one item")

        targeted: Dict[UUID, int] = defaultdict(int)
        untargeted: Dict[UUID, int] = defaultdict(int)
        batch_numbers: Dict[UUID, str] = {}
        for item in items:
            if item.quantity <= 0:
                raise InvalidInputError("Transfer quantity must be greater than zero", product_id=item.product_id)
            if not db.query(Product).filter(Product.id == item.product_id).first():
                raise NotFoundError("Product", item.product_id)
            if item.batch_id:
                batch = db.query(Batch).filter(Batch.id == item.batch_id).first()
                if not batch:
                    raise NotFoundError("Batch", item.batch_id)
                if batch.branch_id != from_branch_id or batch.product_id != item.product_id:
                    raise InvalidInputError(
                        f"Batch {batch.batch_number} does not hold this product at the source branch",
                        batch_id=item.batch_id,
                    )
                targeted[batch.id] += item.quantity
                if batch.quantity < targeted[batch.id]:
                    raise InsufficientStockError(
                        f"Insufficient quantity in batch {batch.batch_number}",
                        batch_id=batch.id,
                        available=batch.quantity,
                        requested=targeted[batch.id],
                    )
                batch_numbers[batch.id] = batch.batch_number
            else:
                untargeted[item.product_id] += item.quantity

        for product_id, requested in untargeted.items():
            available = BatchLedgerService.available_quantity(db, product_id, from_branch_id)
            if available < requested:
                raise InsufficientStockError(
                    f"Insufficient stock at source branch: {available} available, {requested} requested",
                    product_id=product_id,
                    available=available,
                    requested=requested,
                )

        with UnitOfWork(db):
            transfer = StockTransfer(
                transfer_number=DocumentService.get_transfer_number(db),
                from_branch_id=from_branch_id,
                to_branch_id=to_branch_id,
                status=TransferStatus.PENDING,
                requested_by=requested_by,
                notes=notes,
            )
            for item in items:
                transfer.items.append(StockTransferItem(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    batch_id=item.batch_id,
                    batch_number=batch_numbers.get(item.batch_id) if item.batch_id else None,
                ))
            db.add(transfer)

        db.refresh(transfer)
        logger.info(f"Transfer {transfer.transfer_number} requested: {from_branch_id} -> {to_branch_id}")
        return transfer

    @staticmethod
    def _lock_transfer(db: Session, transfer_id: UUID) -> StockTransfer:
        transfer = db.query(StockTransfer).filter(
            StockTransfer.id == transfer_id
        ).populate_existing().with_for_update().first()
        if not transfer:
            raise NotFoundError("Stock transfer", transfer_id)
        return transfer

    @staticmethod
    def approve_transfer(db: Session, transfer_id: UUID, approved_by: UUID) -> StockTransfer:
        if not db.query(User).filter(User.id == approved_by).first():
            raise NotFoundError("User", approved_by)

        with UnitOfWork(db):
            transfer = TransferService._lock_transfer(db, transfer_id)
            if transfer.status != TransferStatus.PENDING:
                raise InvalidStateError(
                    f"Only PENDING transfers can be approved (transfer is {transfer.status})",
                    transfer_id=transfer_id,
                )
            transfer.status = TransferStatus.APPROVED
            transfer.approved_by = approved_by
            transfer.approved_at = datetime.now(timezone.utc)

        db.refresh(transfer)
        logger.info(f"Transfer {transfer.transfer_number} approved by {approved_by}")
        return transfer

    @staticmethod
    def complete_transfer(db: Session, transfer_id: UUID, performed_by: Optional[UUID] = None) -> StockTransfer:
        """
        Move the stock. All lines succeed or none do: a shortfall on any line
        raises InsufficientStockError and rolls back every earlier slice.
        """
        with UnitOfWork(db) as uow:
            transfer = TransferService._lock_transfer(db, transfer_id)
            if transfer.status != TransferStatus.APPROVED:
                raise InvalidStateError(
                    f"Only APPROVED transfers can be completed (transfer is {transfer.status})",
                    transfer_id=transfer_id,
                )

            for item in transfer.items:
                if item.batch_id or item.batch_number:
                    source = TransferService._resolve_source_batch(db, transfer, item)
                    TransferService._move_slice(uow, transfer, source, item.quantity, performed_by)
                    continue

                remaining = item.quantity
                for batch in BatchLedgerService.find_available(
                    db, item.product_id, transfer.from_branch_id, lock=True
                ):
                    if remaining <= 0:
                        break
                    take = min(remaining, batch.quantity)
                    TransferService._move_slice(uow, transfer, batch, take, performed_by)
                    remaining -= take

                if remaining > 0:
                    raise InsufficientStockError(
                        f"Insufficient stock to complete transfer {transfer.transfer_number}: "
                        f"{remaining} units of product {item.product_id} unmet",
                        product_id=item.product_id,
                        requested=item.quantity,
                        unmet=remaining,
                    )

            transfer.status = TransferStatus.COMPLETED
            transfer.completed_at = datetime.now(timezone.utc)

        db.refresh(transfer)
        logger.info(f"Transfer {transfer.transfer_number} completed")
        run_non_critical("transfer_completed_notification", NotificationService.transfer_completed, db, transfer)
        return transfer

    @staticmethod
    def _resolve_source_batch(db: Session, transfer: StockTransfer, item: StockTransferItem) -> Batch:
        """Targeted source batch by id; by batch number when the id is gone."""
        batch = None
        if item.batch_id:
            batch = db.query(Batch).filter(Batch.id == item.batch_id).first()
        if batch is None and item.batch_number:
            batch = db.query(Batch).filter(
                Batch.product_id == item.product_id,
                Batch.branch_id == transfer.from_branch_id,
                Batch.batch_number == item.batch_number,
            ).first()
        if batch is None:
            raise NotFoundError("Batch", item.batch_id or item.batch_number)
        return batch

    @staticmethod
    def _move_slice(
        uow: UnitOfWork,
        transfer: StockTransfer,
        source: Batch,
        quantity: int,
        performed_by: Optional[UUID],
    ) -> Batch:
        db = uow.db
        reference = ("stock_transfer", transfer.id)
        BatchLedgerService.adjust(
            uow, source.id, -quantity, f"Transfer {transfer.transfer_number} out",
            movement_type=MovementType.TRANSFER_OUT, reference=reference, performed_by=performed_by,
        )

        query = db.query(Batch).filter(
            Batch.product_id == source.product_id,
            Batch.branch_id == transfer.to_branch_id,
            Batch.batch_number == source.batch_number,
        )
        if source.expiry_date is None:
            query = query.filter(Batch.expiry_date.is_(None))
        else:
            query = query.filter(Batch.expiry_date == source.expiry_date)
        destination = query.populate_existing().with_for_update().first()

        if destination is None:
            destination = Batch(
                product_id=source.product_id,
                branch_id=transfer.to_branch_id,
                batch_number=source.batch_number,
                quantity=0,
                expiry_date=source.expiry_date,
                cost_price=source.cost_price,
                selling_price=source.selling_price,
            )
            db.add(destination)
            db.flush()

        return BatchLedgerService.adjust(
            uow, destination.id, quantity, f"Transfer {transfer.transfer_number} in",
            movement_type=MovementType.TRANSFER_IN, reference=reference, performed_by=performed_by,
        )
