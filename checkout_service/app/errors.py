"""Exceptions raised by the checkout core.

Each exception carries the HTTP status the API answers with and a short
machine-readable code.
"""


class CheckoutError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(CheckoutError):
    status_code = 400
    code = "validation_error"


class EmptyOrder(ValidationError):
    code = "empty_order"

    def __init__(self):
        super().__init__("No order items provided")


class InvalidCoupon(ValidationError):
    code = "invalid_coupon"

    def __init__(self, code: str):
        super().__init__(f"Invalid or inactive coupon: {code}")


class CouponExpired(ValidationError):
    code = "coupon_expired"

    def __init__(self, code: str):
        super().__init__(f"Coupon has expired: {code}")


class NotFoundError(CheckoutError):
    status_code = 404
    code = "not_found"


class OrderNotFound(NotFoundError):
    code = "order_not_found"

    def __init__(self, order_id):
        super().__init__(f"Order not found: {order_id}")


class ProductNotFound(NotFoundError):
    code = "product_not_found"

    def __init__(self, product_id):
        super().__init__(f"Product not found: {product_id}")


class ReminderNotFound(NotFoundError):
    code = "reminder_not_found"

    def __init__(self, reminder_id):
        super().__init__(f"Reminder not found: {reminder_id}")


class TransactionNotFound(NotFoundError):
    code = "transaction_not_found"

    def __init__(self, transaction_id):
        super().__init__(f"Transaction not found: {transaction_id}")


class ConflictError(CheckoutError):
    status_code = 409
    code = "conflict"


class InsufficientStock(ConflictError):
    code = "insufficient_stock"

    def __init__(self, product_name: str):
        super().__init__(f"Not enough stock for {product_name}")


class ReservationConflict(ConflictError):
    """Stock ran out between order creation and payment finalization."""
    code = "reservation_conflict"

    def __init__(self, order_id):
        super().__init__(f"Insufficient stock to finalize order {order_id}")


class CouponExhausted(ConflictError):
    code = "coupon_exhausted"

    def __init__(self, code: str):
        super().__init__(f"Coupon usage limit reached: {code}")


class InvalidTransition(ConflictError):
    code = "invalid_transition"

    def __init__(self, current, target):
        super().__init__(f"Cannot move order from {current} to {target}")


class AlreadyPaid(ConflictError):
    code = "already_paid"

    def __init__(self, order_id):
        super().__init__(f"Order {order_id} is already paid")


class AuthorizationError(CheckoutError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message)


class UpstreamError(CheckoutError):
    """The payment gateway could not be reached or answered nonsense."""
    status_code = 502
    code = "upstream_error"


class GatewayTimeout(UpstreamError):
    status_code = 504
    code = "gateway_timeout"


class InternalError(CheckoutError):
    status_code = 500
    code = "internal_error"
