from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .status import DiscountType, OrderStatus, PaymentMethod, PaymentStatus, TransactionStatus


# --- Request Models ---

class OrderItemRequest(BaseModel):
    product_id: int
    qty: int


class OrderRequest(BaseModel):
    """Defines the data model for an incoming order request."""
    items: List[OrderItemRequest] = Field(default_factory=list)
    payment_method: PaymentMethod
    shipping_address: Dict[str, Any] = Field(default_factory=dict)
    coupon_code: Optional[str] = None
    contact_email: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: OrderStatus


class PaymentStatusRequest(BaseModel):
    payment_status: PaymentStatus


class MarkReminderReadRequest(BaseModel):
    order_id: int
    reminder_id: int


class InitiatePaymentRequest(BaseModel):
    order_id: int


class ProductRequest(BaseModel):
    name: str
    price: Decimal
    stock: int = 0


class RestockRequest(BaseModel):
    qty: int


class CouponRequest(BaseModel):
    code: str
    discount_type: DiscountType = DiscountType.FIXED
    discount_value: Decimal = Decimal("0")
    max_uses: int = 0
    expires_at: Optional[datetime] = None
    active: bool = True


# --- Response Models ---

class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    product_name: str
    qty: int
    price_at_order: Decimal


class ReminderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    message: str
    sent_at: datetime
    read: bool


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    items: List[OrderItemResponse]
    shipping_address: Dict[str, Any]
    contact_email: Optional[str] = None
    payment_method: PaymentMethod
    status: OrderStatus
    payment_status: PaymentStatus
    discount_type: Optional[DiscountType] = None
    discount_value: Decimal
    coupon_code: Optional[str] = None
    total_price: Decimal
    final_amount: Decimal
    gateway_tracking_id: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    reminders: List[ReminderResponse] = Field(default_factory=list)


class PaymentSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    redirect_url: str
    tracking_id: str


class PlacedOrderResponse(BaseModel):
    message: str
    order: OrderResponse
    payment: Optional[PaymentSessionResponse] = None


class ReminderView(BaseModel):
    reminder_id: int
    order_id: int
    message: str
    sent_at: datetime
    read: bool
    payment_status: PaymentStatus
    amount: Decimal


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    user_id: str
    amount: Decimal
    status: TransactionStatus
    gateway_reference: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None
    created_at: datetime
    is_deleted: bool
    deleted_at: Optional[datetime] = None


class ProductResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    price: Decimal
    stock: int


class CouponResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    active: bool
    expires_at: Optional[datetime] = None
    max_uses: int
    used_count: int
    discount_type: DiscountType
    discount_value: Decimal


class GatewayStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status_code: int
    description: str = ""
    merchant_reference: Optional[str] = None
