from typing import Optional, Protocol

import structlog

from .messaging.bus import RabbitMQProducer

EMAIL_ROUTING_KEY = "notification.email"

log = structlog.get_logger().bind(component="notifier")


class Notifier(Protocol):
    def send_email(self, to: str, subject: str, html: str) -> None: ...


class EventBusNotifier:
    """Queues emails on the message bus for the email worker to deliver.

    A blocking pika connection must not be shared between request threads,
    so every message gets its own short-lived producer.
    """

    def __init__(self, host: str, connect_attempts: int = 3):
        self.host = host
        self.connect_attempts = connect_attempts

    def send_email(self, to: str, subject: str, html: str) -> None:
        producer = RabbitMQProducer(self.host, connect_attempts=self.connect_attempts)
        try:
            producer.publish(EMAIL_ROUTING_KEY, {"to": to, "subject": subject, "html": html})
        finally:
            producer.close()


class LogNotifier:
    """Used when no broker is configured."""

    def send_email(self, to: str, subject: str, html: str) -> None:
        log.info("email_not_queued", to=to, subject=subject)


def notify_safely(notifier: Notifier, to: Optional[str], subject: str, html: str) -> None:
    """Fire-and-forget: a failed send is logged and never reaches the caller."""
    if not to:
        return
    try:
        notifier.send_email(to, subject, html)
    except Exception as exc:
        log.error("email_request_failed", to=to, subject=subject, error=str(exc))


def payment_confirmation(order) -> tuple:
    subject = f"Payment received for order {order.id}"
    html = (
        f"<p>Thank you! We have received your payment of "
        f"<strong>KES {order.final_amount:.2f}</strong> for order <strong>{order.id}</strong>.</p>"
        f"<p>Your order is now being processed.</p>"
    )
    return subject, html


def payment_reminder(order, pay_link: str, customer_name: str = "Customer") -> tuple:
    subject = f"Payment reminder for order {order.id}"
    html = (
        f"<p>Hi {customer_name},</p>"
        f"<p>This is a reminder to complete payment for your order <strong>{order.id}</strong>.</p>"
        f"<p>Amount due: <strong>KES {order.final_amount:.2f}</strong></p>"
        f"<p>Please complete payment here: <a href=\"{pay_link}\">Complete payment</a></p>"
        f"<p>If you've already paid, please ignore this message.</p>"
    )
    return subject, html
