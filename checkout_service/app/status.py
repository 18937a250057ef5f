from enum import Enum

from .errors import InvalidTransition


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"


class PaymentStatus(str, Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"


class PaymentMethod(str, Enum):
    # Pay on delivery or manual settlement; stock is reserved at creation.
    IMMEDIATE = "Immediate"
    # Pesapal / M-Pesa; stock is reserved when the gateway confirms payment.
    DEFERRED_GATEWAY = "DeferredGateway"


class TransactionStatus(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"
    ADMIN_OVERRIDE = "AdminOverride"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.FAILED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.FAILED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.DELIVERED: set(),
}

# Statuses whose goods have left inventory for good.
DISPATCHED = {OrderStatus.SHIPPED, OrderStatus.DELIVERED}

# Statuses a payment callback must never act on.
SETTLED = {OrderStatus.FAILED, OrderStatus.CANCELLED, OrderStatus.SHIPPED, OrderStatus.DELIVERED}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[OrderStatus(current)]


def ensure_transition(current: OrderStatus, target: OrderStatus) -> OrderStatus:
    """Returns ``target`` if the move is allowed, raises InvalidTransition otherwise."""
    current, target = OrderStatus(current), OrderStatus(target)
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value)
    return target
