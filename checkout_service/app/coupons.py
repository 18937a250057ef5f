from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .errors import CouponExhausted, CouponExpired, InvalidCoupon
from .models import Coupon
from .status import DiscountType

CENTS = Decimal("0.01")


def normalize_code(code: str) -> str:
    return code.strip().upper()


def check_coupon(coupon: Optional[Coupon], code: str, now: datetime) -> Coupon:
    """Validates a coupon's state without consuming a use.

    Raises InvalidCoupon when the coupon is missing or inactive,
    CouponExpired once ``now`` reaches ``expires_at`` and CouponExhausted
    when a capped coupon has no uses left.
    """
    if coupon is None or not coupon.active:
        raise InvalidCoupon(code)
    if coupon.expires_at is not None and now >= coupon.expires_at:
        raise CouponExpired(code)
    if coupon.max_uses > 0 and coupon.used_count >= coupon.max_uses:
        raise CouponExhausted(code)
    return coupon


def discount_for(coupon: Optional[Coupon], total: Decimal) -> Decimal:
    if coupon is None:
        return Decimal("0")
    value = Decimal(coupon.discount_value)
    if coupon.discount_type == DiscountType.PERCENTAGE:
        amount = (total * value / Decimal(100)).quantize(CENTS)
    else:
        amount = value
    return min(amount, total)


class CouponBook:
    """Loads coupons and redeems or releases their uses."""

    def find(self, db: Session, code: str) -> Optional[Coupon]:
        return db.query(Coupon).filter(Coupon.code == normalize_code(code)).first()

    def validate(self, db: Session, code: str, now: datetime) -> Coupon:
        return check_coupon(self.find(db, code), code, now)

    def redeem(self, db: Session, code: str) -> bool:
        """Consumes one use if the cap still allows it."""
        updated = (
            db.query(Coupon)
            .filter(
                Coupon.code == normalize_code(code),
                or_(Coupon.max_uses == 0, Coupon.used_count < Coupon.max_uses),
            )
            .update({Coupon.used_count: Coupon.used_count + 1}, synchronize_session=False)
        )
        return updated == 1

    def release(self, db: Session, code: str) -> None:
        db.query(Coupon).filter(
            Coupon.code == normalize_code(code), Coupon.used_count > 0,
        ).update({Coupon.used_count: Coupon.used_count - 1}, synchronize_session=False)

    def create(self, db: Session, code: str, discount_type: DiscountType, discount_value,
               max_uses: int = 0, expires_at: Optional[datetime] = None,
               active: bool = True) -> Coupon:
        coupon = Coupon(
            code=normalize_code(code), discount_type=discount_type, discount_value=discount_value,
            max_uses=max_uses, expires_at=expires_at, active=active, used_count=0,
        )
        db.add(coupon)
        db.flush()
        return coupon
