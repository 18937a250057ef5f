from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from .errors import TransactionNotFound
from .models import Order, Transaction, utcnow
from .status import TransactionStatus

log = structlog.get_logger().bind(component="transaction_ledger")


class TransactionLedger:
    """Append-only audit of settlement attempts and admin overrides."""

    def record(self, db: Session, order: Order, status: TransactionStatus,
               gateway_reference: Optional[str] = None,
               raw_response: Optional[Dict[str, Any]] = None) -> Transaction:
        tx = Transaction(
            order_id=order.id,
            user_id=order.user_id,
            amount=order.final_amount,
            status=status,
            gateway_reference=gateway_reference,
            raw_response=raw_response,
        )
        db.add(tx)
        db.flush()
        log.info("transaction_recorded", order_id=order.id, status=status.value, transaction_id=tx.id)
        return tx

    def get(self, db: Session, transaction_id: int) -> Transaction:
        tx = db.get(Transaction, transaction_id)
        if tx is None:
            raise TransactionNotFound(transaction_id)
        return tx

    def list_active(self, db: Session) -> List[Transaction]:
        return (
            db.query(Transaction)
            .filter(Transaction.is_deleted.is_(False))
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .all()
        )

    def list_trashed(self, db: Session) -> List[Transaction]:
        return (
            db.query(Transaction)
            .filter(Transaction.is_deleted.is_(True))
            .order_by(Transaction.deleted_at.desc(), Transaction.id.desc())
            .all()
        )

    def list_for_order(self, db: Session, order_id: int) -> List[Transaction]:
        return db.query(Transaction).filter(Transaction.order_id == order_id).order_by(Transaction.id).all()

    def has_success(self, db: Session, order_id: int, gateway_reference: str) -> bool:
        """Whether this gateway payment already produced a Success entry, trashed or not."""
        return db.query(
            db.query(Transaction).filter(
                Transaction.order_id == order_id,
                Transaction.gateway_reference == gateway_reference,
                Transaction.status == TransactionStatus.SUCCESS,
            ).exists()
        ).scalar()

    def soft_delete(self, db: Session, transaction_id: int) -> Transaction:
        tx = self.get(db, transaction_id)
        tx.is_deleted = True
        tx.deleted_at = utcnow()
        return tx

    def restore(self, db: Session, transaction_id: int) -> Transaction:
        tx = self.get(db, transaction_id)
        tx.is_deleted = False
        tx.deleted_at = None
        return tx
