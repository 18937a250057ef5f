"""Order and payment reconciliation.

Ties an order's lifecycle to the payment gateway while keeping stock
consistent: an order's items are decremented exactly once, at creation for
Immediate orders and on confirmed payment for DeferredGateway orders, and
given back whenever that reservation is compensated.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from .actors import Actor, require_admin, require_owner_or_admin
from .config import Settings
from .coupons import CouponBook, discount_for
from .errors import (
    AlreadyPaid, CheckoutError, CouponExhausted, EmptyOrder, InsufficientStock, InvalidTransition,
    OrderNotFound, ProductNotFound, ReservationConflict, UpstreamError, ValidationError,
)
from .gateway import PaymentGateway, PaymentSession
from .models import Order, OrderItem, Product, utcnow
from .notifications import Notifier, notify_safely, payment_confirmation
from .status import (
    DISPATCHED, SETTLED, OrderStatus, PaymentMethod, PaymentStatus, TransactionStatus,
    ensure_transition,
)
from .stock import ProductStock
from .store import OrderStore
from .transactions import TransactionLedger
from .unit_of_work import UnitOfWork

log = structlog.get_logger().bind(component="reconciliation_engine")


@dataclass
class OrderLine:
    product_id: int
    qty: int


class ReconciliationEngine:
    def __init__(self, session_factory, gateway: PaymentGateway, notifier: Notifier,
                 settings: Settings, clock=utcnow):
        self.gateway = gateway
        self.notifier = notifier
        self.settings = settings
        self.clock = clock
        self.uow = UnitOfWork(session_factory, settings.max_retries)
        self.store = OrderStore()
        self.stock = ProductStock()
        self.coupons = CouponBook()
        self.ledger = TransactionLedger()

    # -- reservation helpers -------------------------------------------------

    def _reserve(self, db: Session, order: Order) -> Optional[int]:
        """Decrements the order's stock; returns the short product id on failure."""
        short = self.stock.reserve_all(db, [(item.product_id, item.qty) for item in order.items])
        if short is not None:
            return short
        order.stock_reserved = True
        if order.coupon_code:
            order.coupon_redeemed = self.coupons.redeem(db, order.coupon_code)
            if not order.coupon_redeemed:
                log.warning("coupon_not_redeemed", order_id=order.id, coupon=order.coupon_code)
        return None

    def _release(self, db: Session, order: Order) -> None:
        """Gives back the order's reserved stock and redeemed coupon use."""
        if not order.stock_reserved:
            return
        self.stock.release_all(db, [(item.product_id, item.qty) for item in order.items])
        order.stock_reserved = False
        if order.coupon_redeemed:
            self.coupons.release(db, order.coupon_code)
            order.coupon_redeemed = False
        log.info("reservation_released", order_id=order.id)

    def _is_settled(self, order: Order) -> bool:
        return order.payment_status == PaymentStatus.PAID or order.status in SETTLED

    def _finalize(self, db: Session, order: Order, tx_status: TransactionStatus,
                  gateway_reference: Optional[str] = None,
                  raw_response: Optional[Dict[str, Any]] = None) -> bool:
        """Confirms payment, reserving stock first if the order holds none.

        A shortfall fails the order instead of overselling and records no
        transaction.
        """
        if not order.stock_reserved:
            short = self._reserve(db, order)
            if short is not None:
                order.status = ensure_transition(order.status, OrderStatus.FAILED)
                order.failure_reason = f"Insufficient stock for product {short}"
                log.warning("reservation_conflict", order_id=order.id, product_id=short)
                return False
        if order.status == OrderStatus.PENDING:
            order.status = ensure_transition(order.status, OrderStatus.PROCESSING)
        order.payment_status = PaymentStatus.PAID
        order.paid_at = self.clock()
        self.ledger.record(db, order, tx_status, gateway_reference, raw_response)
        log.info("payment_finalized", order_id=order.id, via=tx_status.value)
        return True

    def _notify_paid(self, order: Order) -> None:
        subject, html = payment_confirmation(order)
        notify_safely(self.notifier, order.contact_email, subject, html)

    # -- order creation ------------------------------------------------------

    def create_order(self, actor: Actor, lines: List[OrderLine], payment_method: PaymentMethod,
                     shipping_address: Dict[str, Any], coupon_code: Optional[str] = None,
                     contact_email: Optional[str] = None) -> Order:
        if not lines:
            raise EmptyOrder()
        for line in lines:
            if line.qty <= 0:
                raise ValidationError(f"Quantity must be positive for product {line.product_id}")
        payment_method = PaymentMethod(payment_method)
        now = self.clock()

        def create(db: Session) -> Order:
            items = []
            for line in lines:
                product = db.get(Product, line.product_id)
                if product is None:
                    raise ProductNotFound(line.product_id)
                if line.qty > product.stock:
                    raise InsufficientStock(product.name)
                items.append(OrderItem(
                    product_id=product.id, product_name=product.name,
                    qty=line.qty, price_at_order=product.price,
                ))

            coupon = self.coupons.validate(db, coupon_code, now) if coupon_code else None
            total = sum((Decimal(item.price_at_order) * item.qty for item in items), Decimal("0"))
            discount = discount_for(coupon, total)
            deferred = payment_method == PaymentMethod.DEFERRED_GATEWAY
            order = Order(
                user_id=actor.user_id,
                items=items,
                reminders=[],
                shipping_address=shipping_address or {},
                contact_email=contact_email or (shipping_address or {}).get("email"),
                payment_method=payment_method,
                status=OrderStatus.PENDING if deferred else OrderStatus.PROCESSING,
                payment_status=PaymentStatus.UNPAID,
                stock_reserved=False,
                coupon_redeemed=False,
                discount_type=coupon.discount_type if coupon else None,
                discount_value=coupon.discount_value if coupon else Decimal("0"),
                coupon_code=coupon.code if coupon else None,
                total_price=total,
                final_amount=total - discount,
            )

            if not deferred:
                short = self._reserve(db, order)
                if short is not None:
                    name = next(item.product_name for item in items if item.product_id == short)
                    raise InsufficientStock(name)
                if order.coupon_code and not order.coupon_redeemed:
                    raise CouponExhausted(order.coupon_code)
            return self.store.add(db, order)

        order = self.uow.run(create)
        log.info("order_created", order_id=order.id, user_id=actor.user_id,
                 payment_method=payment_method.value, stock_reserved=order.stock_reserved)
        return order

    def initiate_payment(self, order_id, actor: Actor) -> PaymentSession:
        """Opens a gateway payment session for a pending deferred order."""

        def load(db: Session) -> Order:
            order = self.store.find_by_id(db, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            require_owner_or_admin(actor, order)
            if order.payment_method != PaymentMethod.DEFERRED_GATEWAY:
                raise ValidationError(f"Order {order.id} is not paid through the gateway")
            if order.payment_status == PaymentStatus.PAID:
                raise AlreadyPaid(order.id)
            if order.status != OrderStatus.PENDING:
                raise InvalidTransition(order.status.value, "payment")
            return order

        order = self.uow.run(load)
        address = order.shipping_address or {}
        first_name, _, last_name = (address.get("full_name") or "").partition(" ")
        customer = {
            "email": order.contact_email,
            "phone": address.get("phone"),
            "first_name": first_name or None,
            "last_name": last_name or None,
        }
        # No transaction is open across the remote call.
        session = self.gateway.submit_order(
            order.id, order.final_amount, self.settings.pesapal.currency,
            self.settings.pesapal.callback_url, customer,
        )

        def remember(db: Session) -> None:
            current = self.store.find_by_id(db, order.id, lock=True)
            if current is not None:
                current.gateway_tracking_id = session.tracking_id

        self.uow.run(remember)
        log.info("payment_initiated", order_id=order.id, tracking_id=session.tracking_id)
        return session

    def place_order(self, actor: Actor, lines: List[OrderLine], payment_method: PaymentMethod,
                    shipping_address: Dict[str, Any], coupon_code: Optional[str] = None,
                    contact_email: Optional[str] = None) -> Tuple[Order, Optional[PaymentSession]]:
        """Creates an order and, for gateway payments, opens the payment session.

        If the gateway cannot be reached the new order is deleted again so no
        orphan unpaid order remains.
        """
        order = self.create_order(actor, lines, payment_method, shipping_address,
                                  coupon_code=coupon_code, contact_email=contact_email)
        if order.payment_method != PaymentMethod.DEFERRED_GATEWAY:
            return order, None
        try:
            session = self.initiate_payment(order.id, actor)
        except UpstreamError:
            log.error("payment_initiation_failed", order_id=order.id)
            try:
                self.uow.run(self._remove, order.id)
            except CheckoutError as exc:
                # The gateway failure is what the caller needs to see.
                log.error("orphan_order_not_removed", order_id=order.id, error=exc.message)
            raise
        order.gateway_tracking_id = session.tracking_id
        return order, session

    # -- settlement ----------------------------------------------------------

    def handle_gateway_callback(self, order_ref, tracking_id: str) -> Optional[Order]:
        """Reconciles an order with the gateway's authoritative payment status.

        Safe to call any number of times for the same payment. Raises
        UpstreamError (including GatewayTimeout) without touching the order
        when the gateway cannot be asked, so the gateway retries later.
        """
        status = self.gateway.get_status(tracking_id)
        succeeded = status.status_code == self.gateway.success_status_code
        clog = log.bind(order_ref=order_ref, tracking_id=tracking_id, status_code=status.status_code)

        def reconcile(db: Session):
            order = self.store.find_by_id(db, order_ref, lock=True)
            if order is None:
                clog.warning("callback_order_missing")
                return None, False
            if status.merchant_reference is not None and str(status.merchant_reference) != str(order.id):
                clog.warning("callback_reference_mismatch", merchant_reference=status.merchant_reference)
                return order, False
            if self._is_settled(order):
                clog.info("callback_already_settled", status=order.status.value,
                          payment_status=order.payment_status.value)
                return order, False
            if succeeded and self.ledger.has_success(db, order.id, tracking_id):
                # This payment was already settled once; an admin may have
                # changed the flags since.
                clog.info("callback_already_recorded")
                return order, False

            order.gateway_tracking_id = tracking_id
            if succeeded:
                return order, self._finalize(db, order, TransactionStatus.SUCCESS, tracking_id, status.raw)

            if order.status == OrderStatus.PENDING:
                order.status = ensure_transition(order.status, OrderStatus.FAILED)
                order.failure_reason = status.description or f"Gateway status {status.status_code}"
                self.ledger.record(db, order, TransactionStatus.FAILED, tracking_id, status.raw)
                clog.info("payment_failed", order_id=order.id)
            else:
                clog.info("callback_failure_ignored", status=order.status.value)
            return order, False

        order, paid = self.uow.run(reconcile)
        if paid:
            self._notify_paid(order)
        return order

    def set_payment_status(self, order_id, new_status: PaymentStatus, actor: Actor) -> Order:
        """Admin override of an order's payment flag.

        Marking Paid runs the same finalization as a successful callback.
        Marking Unpaid only flips the flag; reserved stock stays reserved.
        """
        require_admin(actor)
        new_status = PaymentStatus(new_status)

        def override(db: Session):
            order = self.store.find_by_id(db, order_id, lock=True)
            if order is None:
                raise OrderNotFound(order_id)
            if new_status == PaymentStatus.UNPAID:
                if order.payment_status != PaymentStatus.UNPAID:
                    order.payment_status = PaymentStatus.UNPAID
                    log.info("payment_marked_unpaid", order_id=order.id, actor=actor.user_id)
                return order, False, False
            if order.payment_status == PaymentStatus.PAID:
                return order, False, False
            if order.status in (OrderStatus.FAILED, OrderStatus.CANCELLED):
                raise InvalidTransition(order.status.value, PaymentStatus.PAID.value)
            paid = self._finalize(db, order, TransactionStatus.ADMIN_OVERRIDE, None,
                                  {"note": "Marked Paid by admin", "actor": actor.user_id})
            return order, paid, not paid

        order, paid, conflict = self.uow.run(override)
        if conflict:
            # The Failed status is committed; the admin still hears about it.
            raise ReservationConflict(order.id)
        if paid:
            self._notify_paid(order)
        return order

    # -- administration ------------------------------------------------------

    def update_order_status(self, order_id, new_status: OrderStatus, actor: Actor) -> Order:
        require_admin(actor)
        target = OrderStatus(new_status)

        def update(db: Session) -> Order:
            order = self.store.find_by_id(db, order_id, lock=True)
            if order is None:
                raise OrderNotFound(order_id)
            if target == OrderStatus.PROCESSING and order.status == OrderStatus.PENDING:
                # Only payment finalization may move a pending order forward.
                raise InvalidTransition(order.status.value, target.value)
            ensure_transition(order.status, target)
            if target == OrderStatus.CANCELLED:
                self._release(db, order)
            order.status = target
            return order

        order = self.uow.run(update)
        log.info("order_status_updated", order_id=order.id, status=target.value, actor=actor.user_id)
        return order

    def _remove(self, db: Session, order_id) -> None:
        order = self.store.find_by_id(db, order_id, lock=True)
        if order is None:
            raise OrderNotFound(order_id)
        if order.status not in DISPATCHED:
            self._release(db, order)
        self.store.delete(db, order)

    def delete_order(self, order_id, actor: Actor) -> None:
        """Removes an order, first giving back stock for undispatched goods."""
        require_admin(actor)
        self.uow.run(self._remove, order_id)
        log.info("order_deleted", order_id=order_id, actor=actor.user_id)

    # -- queries -------------------------------------------------------------

    def get_order(self, order_id, actor: Actor) -> Order:
        def load(db: Session) -> Order:
            order = self.store.find_by_id(db, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            require_owner_or_admin(actor, order)
            return order

        return self.uow.run(load)

    def list_orders(self, actor: Actor) -> List[Order]:
        require_admin(actor)
        return self.uow.run(self.store.list_all)

    def list_orders_for_user(self, actor: Actor) -> List[Order]:
        return self.uow.run(self.store.list_for_user, actor.user_id)

    def payment_status(self, tracking_id: str, actor: Actor):
        """Gateway status of a payment, for the order's owner or an admin."""
        order = self.uow.run(self.store.find_by_tracking_id, tracking_id)
        if order is None:
            require_admin(actor)
        else:
            require_owner_or_admin(actor, order)
        return self.gateway.get_status(tracking_id)
