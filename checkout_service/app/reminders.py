from typing import Any, Dict, List

import structlog
from sqlalchemy.orm import Session

from .actors import Actor, require_admin, require_owner
from .errors import AlreadyPaid, OrderNotFound, ReminderNotFound
from .notifications import Notifier, notify_safely, payment_reminder
from .status import PaymentStatus
from .store import OrderStore
from .unit_of_work import UnitOfWork

log = structlog.get_logger().bind(component="reminders")


class ReminderService:
    """Payment reminders kept on the order and emailed to the customer."""

    def __init__(self, uow: UnitOfWork, notifier: Notifier, frontend_url: str):
        self.uow = uow
        self.notifier = notifier
        self.frontend_url = frontend_url.rstrip("/")
        self.store = OrderStore()

    def send_payment_reminder(self, order_id, actor: Actor):
        require_admin(actor)

        def append(db: Session):
            order = self.store.find_by_id(db, order_id, lock=True)
            if order is None:
                raise OrderNotFound(order_id)
            if order.payment_status == PaymentStatus.PAID:
                raise AlreadyPaid(order.id)
            message = (
                f"Payment reminder sent for order {order.id} - "
                f"Amount due: KES {order.final_amount:.2f}"
            )
            reminder = self.store.add_reminder(db, order, message)
            return order, reminder

        order, reminder = self.uow.run(append)
        log.info("payment_reminder_added", order_id=order.id, reminder_id=reminder.id)

        pay_link = f"{self.frontend_url}/pay?orderId={order.id}"
        name = (order.shipping_address or {}).get("full_name") or "Customer"
        subject, html = payment_reminder(order, pay_link, name)
        notify_safely(self.notifier, order.contact_email, subject, html)
        return reminder

    def list_reminders(self, actor: Actor) -> List[Dict[str, Any]]:
        """The actor's reminders across all their orders, newest order first."""
        orders = self.uow.run(self.store.list_for_user, actor.user_id)
        return [
            {
                "reminder_id": reminder.id,
                "order_id": order.id,
                "message": reminder.message,
                "sent_at": reminder.sent_at,
                "read": reminder.read,
                "payment_status": order.payment_status,
                "amount": order.final_amount,
            }
            for order in orders
            for reminder in order.reminders
        ]

    def mark_reminder_read(self, actor: Actor, order_id, reminder_id: int) -> None:
        def mark(db: Session) -> None:
            order = self.store.find_by_id(db, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            require_owner(actor, order)
            reminder = next((r for r in order.reminders if r.id == reminder_id), None)
            if reminder is None:
                raise ReminderNotFound(reminder_id)
            reminder.read = True

        self.uow.run(mark)
