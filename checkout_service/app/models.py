from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Column, DateTime, Enum, ForeignKey, Integer, Numeric, String,
)
from sqlalchemy.orm import relationship

from .database import Base # Import the Base class from our database setup
from .status import DiscountType, OrderStatus, PaymentMethod, PaymentStatus, TransactionStatus


def utcnow() -> datetime:
    """Naive UTC timestamp, comparable with values read back from any backend."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum(enum_cls):
    # Store the enum's value ("Pending") rather than its member name.
    return Enum(enum_cls, values_callable=lambda members: [m.value for m in members],
                native_enum=False, length=32)


# A product whose stock is the single source of truth for availability.
class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, index=True, nullable=False) # Stored upper-case.
    active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)
    max_uses = Column(Integer, nullable=False, default=0) # 0 means unlimited.
    used_count = Column(Integer, nullable=False, default=0)
    discount_type = Column(_enum(DiscountType), nullable=False, default=DiscountType.FIXED)
    discount_value = Column(Numeric(12, 2), nullable=False, default=0)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), index=True, nullable=False)
    shipping_address = Column(JSON, nullable=False, default=dict)
    contact_email = Column(String(255), nullable=True)
    payment_method = Column(_enum(PaymentMethod), nullable=False)
    status = Column(_enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    payment_status = Column(_enum(PaymentStatus), nullable=False, default=PaymentStatus.UNPAID)

    discount_type = Column(_enum(DiscountType), nullable=True)
    discount_value = Column(Numeric(12, 2), nullable=False, default=0)
    coupon_code = Column(String(64), nullable=True)
    total_price = Column(Numeric(12, 2), nullable=False)
    final_amount = Column(Numeric(12, 2), nullable=False)

    # True once the items' stock has been decremented for this order.
    stock_reserved = Column(Boolean, nullable=False, default=False)
    coupon_redeemed = Column(Boolean, nullable=False, default=False)
    gateway_tracking_id = Column(String(128), nullable=True, index=True)
    failure_reason = Column(String(255), nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id",
    )
    reminders = relationship(
        "OrderReminder", back_populates="order", cascade="all, delete-orphan",
        order_by="OrderReminder.id",
    )

    # Every UPDATE is guarded by "WHERE version = <loaded version>".
    __mapper_args__ = {"version_id_col": version}


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("qty > 0", name="ck_order_item_qty_positive"),)

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    qty = Column(Integer, nullable=False)
    price_at_order = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")


class OrderReminder(Base):
    __tablename__ = "order_reminders"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    message = Column(String(512), nullable=False)
    sent_at = Column(DateTime, nullable=False, default=utcnow)
    read = Column(Boolean, nullable=False, default=False)

    order = relationship("Order", back_populates="reminders")


# Audit record of a settlement attempt or admin override; never updated
# apart from the soft-delete flag.
class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, index=True, nullable=False) # No FK: audit outlives the order.
    user_id = Column(String(64), index=True, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(_enum(TransactionStatus), nullable=False)
    gateway_reference = Column(String(128), nullable=True)
    raw_response = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
