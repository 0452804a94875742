"""
Notification Service - in-app notifications written after a committed change

Callers dispatch these through run_non_critical; a failed write rolls back
only the notification row and is reported instead of raised.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from pharmaledger.database import UnitOfWork
from pharmaledger.models import (
    InsuranceClaim,
    Notification,
    NotificationType,
    Product,
    Sale,
    StockTransfer,
)

logger = logging.getLogger(__name__)


class NotificationService:

    @staticmethod
    def notify(
        db: Session,
        notification_type: str,
        title: str,
        message: str,
        branch_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
    ) -> Notification:
        with UnitOfWork(db):
            notification = Notification(
                type=notification_type,
                title=title,
                message=message,
                branch_id=branch_id,
                user_id=user_id,
            )
            db.add(notification)
        logger.info(f"Notification {notification_type} queued for branch {branch_id}")
        return notification

    @staticmethod
    def sale_cancelled(db: Session, sale: Sale) -> Notification:
        return NotificationService.notify(
            db,
            NotificationType.SALE_CANCELLED,
            "Sale cancelled",
            f"Sale {sale.invoice_number} was cancelled and its stock returned.",
            branch_id=sale.branch_id,
            user_id=sale.sold_by_id,
        )

    @staticmethod
    def transfer_completed(db: Session, transfer: StockTransfer) -> Notification:
        return NotificationService.notify(
            db,
            NotificationType.TRANSFER_COMPLETED,
            "Stock transfer received",
            f"Transfer {transfer.transfer_number} has been completed.",
            branch_id=transfer.to_branch_id,
            user_id=transfer.requested_by,
        )

    @staticmethod
    def claim_status_changed(db: Session, claim: InsuranceClaim) -> Notification:
        branch_id = claim.sale.branch_id if claim.sale else None
        return NotificationService.notify(
            db,
            NotificationType.CLAIM_STATUS,
            "Insurance claim updated",
            f"Claim {claim.claim_number} is now {claim.status}.",
            branch_id=branch_id,
        )

    @staticmethod
    def low_stock(db: Session, branch_id: UUID, product: Product, current_stock: int) -> Notification:
        return NotificationService.notify(
            db,
            NotificationType.LOW_STOCK,
            "Low stock",
            f"{product.name} is down to {current_stock} units (reorder level {product.reorder_level}).",
            branch_id=branch_id,
        )
