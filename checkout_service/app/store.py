from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

from .models import Order, OrderReminder


class OrderStore:
    """Loads and persists Order aggregates with their items and reminders."""

    def _query(self, db: Session):
        return db.query(Order).options(selectinload(Order.items), selectinload(Order.reminders))

    def find_by_id(self, db: Session, order_id, lock: bool = False) -> Optional[Order]:
        try:
            order_id = int(order_id)
        except (TypeError, ValueError):
            return None
        query = self._query(db).filter(Order.id == order_id)
        if lock:
            # Row lock where the backend supports it; the version column
            # catches concurrent writers everywhere else.
            query = query.with_for_update(of=Order).populate_existing()
        return query.first()

    def find_by_tracking_id(self, db: Session, tracking_id: str) -> Optional[Order]:
        return db.query(Order).filter(Order.gateway_tracking_id == tracking_id).first()

    def add(self, db: Session, order: Order) -> Order:
        db.add(order)
        db.flush()
        return order

    def delete(self, db: Session, order: Order) -> None:
        db.delete(order)
        db.flush()

    def list_all(self, db: Session) -> List[Order]:
        return self._query(db).order_by(Order.created_at.desc(), Order.id.desc()).all()

    def list_for_user(self, db: Session, user_id: str) -> List[Order]:
        return (
            self._query(db)
            .filter(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def add_reminder(self, db: Session, order: Order, message: str) -> OrderReminder:
        reminder = OrderReminder(message=message, read=False)
        order.reminders.append(reminder)
        db.flush()
        return reminder
