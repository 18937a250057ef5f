"""Tests for coupon validation and redemption."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from checkout_service.app.coupons import CouponBook, check_coupon, discount_for, normalize_code
from checkout_service.app.errors import CouponExhausted, CouponExpired, InvalidCoupon
from checkout_service.app.models import Coupon
from checkout_service.app.status import DiscountType

NOW = datetime(2026, 5, 1, 12, 0, 0)


def coupon(**overrides):
    fields = dict(code="SAVE10", active=True, expires_at=None, max_uses=0, used_count=0,
                  discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("10"))
    fields.update(overrides)
    return Coupon(**fields)


class TestCheckCoupon:
    def test_missing_coupon_is_invalid(self):
        with pytest.raises(InvalidCoupon):
            check_coupon(None, "NOPE", NOW)

    def test_inactive_coupon_is_invalid(self):
        with pytest.raises(InvalidCoupon):
            check_coupon(coupon(active=False), "SAVE10", NOW)

    def test_coupon_without_expiry_is_valid(self):
        c = coupon()
        assert check_coupon(c, "SAVE10", NOW) is c

    def test_coupon_before_expiry_is_valid(self):
        c = coupon(expires_at=NOW + timedelta(seconds=1))
        assert check_coupon(c, "SAVE10", NOW) is c

    def test_coupon_at_expiry_instant_is_expired(self):
        with pytest.raises(CouponExpired):
            check_coupon(coupon(expires_at=NOW), "SAVE10", NOW)

    def test_used_up_coupon_is_exhausted(self):
        with pytest.raises(CouponExhausted):
            check_coupon(coupon(max_uses=1, used_count=1), "SAVE10", NOW)

    def test_coupon_with_a_use_left_is_accepted(self):
        c = coupon(max_uses=1, used_count=0)
        assert check_coupon(c, "SAVE10", NOW) is c

    def test_unlimited_coupon_ignores_used_count(self):
        c = coupon(max_uses=0, used_count=500)
        assert check_coupon(c, "SAVE10", NOW) is c

    def test_validation_does_not_consume(self):
        c = coupon(max_uses=3, used_count=1)
        check_coupon(c, "SAVE10", NOW)
        assert c.used_count == 1


class TestDiscount:
    def test_no_coupon_no_discount(self):
        assert discount_for(None, Decimal("50.00")) == Decimal("0")

    def test_percentage_discount(self):
        c = coupon(discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("15"))
        assert discount_for(c, Decimal("200.00")) == Decimal("30.00")

    def test_fixed_discount(self):
        c = coupon(discount_type=DiscountType.FIXED, discount_value=Decimal("25"))
        assert discount_for(c, Decimal("200.00")) == Decimal("25")

    def test_fixed_discount_never_exceeds_total(self):
        c = coupon(discount_type=DiscountType.FIXED, discount_value=Decimal("500"))
        assert discount_for(c, Decimal("120.00")) == Decimal("120.00")


class TestCouponBook:
    def test_codes_are_case_insensitive(self, session_factory, make_coupon):
        make_coupon(code="WELCOME")
        with session_factory() as db:
            assert CouponBook().find(db, "  welcome ").code == "WELCOME"
        assert normalize_code(" mixedCase ") == "MIXEDCASE"

    def test_redeem_respects_cap(self, session_factory, make_coupon, coupon_uses):
        code = make_coupon(code="ONCE", max_uses=1)
        book = CouponBook()
        with session_factory() as db:
            assert book.redeem(db, code) is True
            assert book.redeem(db, code) is False
            db.commit()
        assert coupon_uses(code) == 1

    def test_release_gives_back_a_use(self, session_factory, make_coupon, coupon_uses):
        code = make_coupon(code="TWICE", max_uses=2, used_count=2)
        with session_factory() as db:
            CouponBook().release(db, code)
            db.commit()
        assert coupon_uses(code) == 1

    def test_release_never_goes_below_zero(self, session_factory, make_coupon, coupon_uses):
        code = make_coupon(code="FRESH")
        with session_factory() as db:
            CouponBook().release(db, code)
            db.commit()
        assert coupon_uses(code) == 0
