"""Pytest fixtures for checkout service tests."""

import os

# The app module builds its engine from the environment at import time.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal

import pytest

from checkout_service.app.actors import Actor
from checkout_service.app.backoffice import BackOffice
from checkout_service.app.config import Settings
from checkout_service.app.database import Base, make_engine, make_session_factory
from checkout_service.app.gateway import GatewayStatus, PaymentSession
from checkout_service.app.models import Coupon, Order, Product
from checkout_service.app.reconciliation import ReconciliationEngine
from checkout_service.app.reminders import ReminderService
from checkout_service.app.status import DiscountType
from checkout_service.app.transactions import TransactionLedger

PESAPAL_COMPLETED = 1
PESAPAL_FAILED = 2


class FakeGateway:
    """In-memory stand-in for the Pesapal client."""

    success_status_code = PESAPAL_COMPLETED

    def __init__(self):
        self.statuses = {}
        self.references = {}
        self.submitted = []
        self.status_calls = 0
        self.fail_with = None
        self.on_status = None

    def request_token(self):
        return "test-token"

    def submit_order(self, order_id, amount, currency, callback_url, customer):
        if self.fail_with is not None:
            raise self.fail_with
        tracking_id = f"TRK-{order_id}-{len(self.submitted) + 1}"
        self.submitted.append({
            "order_id": order_id,
            "amount": amount,
            "currency": currency,
            "callback_url": callback_url,
            "customer": customer,
        })
        return PaymentSession(redirect_url=f"https://pay.example.test/{tracking_id}", tracking_id=tracking_id)

    def get_status(self, tracking_id):
        self.status_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        if self.on_status is not None:
            hook, self.on_status = self.on_status, None
            hook(tracking_id)
        code = self.statuses.get(tracking_id, PESAPAL_FAILED)
        reference = self.references.get(tracking_id)
        return GatewayStatus(
            status_code=code,
            description="Completed" if code == PESAPAL_COMPLETED else "Failed",
            merchant_reference=reference,
            raw={"status_code": code, "merchant_reference": reference},
        )

    def confirm(self, tracking_id, order_id):
        self.statuses[tracking_id] = PESAPAL_COMPLETED
        self.references[tracking_id] = str(order_id)

    def decline(self, tracking_id, order_id):
        self.statuses[tracking_id] = PESAPAL_FAILED
        self.references[tracking_id] = str(order_id)


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send_email(self, to, subject, html):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", frontend_url="https://shop.example.test")


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def checkout(session_factory, gateway, notifier, settings):
    return ReconciliationEngine(session_factory, gateway, notifier, settings)


@pytest.fixture
def reminders(checkout, notifier, settings):
    return ReminderService(checkout.uow, notifier, settings.frontend_url)


@pytest.fixture
def backoffice(checkout):
    return BackOffice(checkout.uow)


@pytest.fixture
def admin():
    return Actor(user_id="admin-1", is_admin=True)


@pytest.fixture
def customer():
    return Actor(user_id="user-1")


@pytest.fixture
def other_customer():
    return Actor(user_id="user-2")


@pytest.fixture
def make_product(session_factory):
    """Insert a product and return its id."""
    def create(name="Widget", price="100.00", stock=10):
        with session_factory() as db:
            product = Product(name=name, price=Decimal(price), stock=stock)
            db.add(product)
            db.commit()
            return product.id
    return create


@pytest.fixture
def make_coupon(session_factory):
    """Insert a coupon and return its code."""
    def create(code="SAVE10", discount_type=DiscountType.PERCENTAGE, discount_value="10",
               max_uses=0, used_count=0, expires_at=None, active=True):
        with session_factory() as db:
            coupon = Coupon(
                code=code.upper(), discount_type=discount_type, discount_value=Decimal(discount_value),
                max_uses=max_uses, used_count=used_count, expires_at=expires_at, active=active,
            )
            db.add(coupon)
            db.commit()
            return coupon.code
    return create


@pytest.fixture
def stock_of(session_factory):
    def read(product_id):
        with session_factory() as db:
            return db.get(Product, product_id).stock
    return read


@pytest.fixture
def coupon_uses(session_factory):
    def read(code):
        with session_factory() as db:
            return db.query(Coupon).filter(Coupon.code == code.upper()).one().used_count
    return read


@pytest.fixture
def reload_order(session_factory):
    def read(order_id):
        with session_factory() as db:
            return db.get(Order, order_id)
    return read


@pytest.fixture
def transactions_for(session_factory):
    def read(order_id):
        with session_factory() as db:
            return TransactionLedger().list_for_order(db, order_id)
    return read
