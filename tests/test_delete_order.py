"""Tests for order deletion and stock restoration."""

import pytest

from checkout_service.app.errors import AuthorizationError, OrderNotFound
from checkout_service.app.reconciliation import OrderLine
from checkout_service.app.status import OrderStatus, PaymentMethod, PaymentStatus


class TestDeleteOrder:
    def test_reserved_stock_comes_back(self, checkout, customer, admin, make_product, stock_of,
                                       reload_order):
        pid = make_product(stock=10)
        order = checkout.create_order(customer, [OrderLine(pid, 4)], PaymentMethod.IMMEDIATE, {})
        assert stock_of(pid) == 6

        checkout.delete_order(order.id, admin)

        assert stock_of(pid) == 10
        assert reload_order(order.id) is None

    def test_unpaid_deferred_order_does_not_inflate_stock(self, checkout, customer, admin,
                                                          make_product, stock_of):
        pid = make_product(stock=10)
        order = checkout.create_order(customer, [OrderLine(pid, 4)], PaymentMethod.DEFERRED_GATEWAY, {})

        checkout.delete_order(order.id, admin)

        assert stock_of(pid) == 10

    def test_paid_deferred_order_gives_stock_back(self, checkout, customer, admin, make_product,
                                                  stock_of):
        pid = make_product(stock=10)
        order = checkout.create_order(customer, [OrderLine(pid, 4)], PaymentMethod.DEFERRED_GATEWAY, {})
        checkout.set_payment_status(order.id, PaymentStatus.PAID, admin)
        assert stock_of(pid) == 6

        checkout.delete_order(order.id, admin)

        assert stock_of(pid) == 10

    @pytest.mark.parametrize("dispatched", [[OrderStatus.SHIPPED], [OrderStatus.SHIPPED, OrderStatus.DELIVERED]])
    def test_dispatched_goods_are_not_restocked(self, checkout, customer, admin, make_product,
                                                stock_of, dispatched):
        pid = make_product(stock=10)
        order = checkout.create_order(customer, [OrderLine(pid, 4)], PaymentMethod.IMMEDIATE, {})
        for status in dispatched:
            checkout.update_order_status(order.id, status, admin)

        checkout.delete_order(order.id, admin)

        assert stock_of(pid) == 6

    def test_cancelled_order_is_not_restocked_twice(self, checkout, customer, admin, make_product,
                                                    stock_of):
        pid = make_product(stock=10)
        order = checkout.create_order(customer, [OrderLine(pid, 4)], PaymentMethod.IMMEDIATE, {})
        checkout.update_order_status(order.id, OrderStatus.CANCELLED, admin)
        assert stock_of(pid) == 10

        checkout.delete_order(order.id, admin)

        assert stock_of(pid) == 10

    def test_redeemed_coupon_use_is_released(self, checkout, customer, admin, make_product, make_coupon,
                                             coupon_uses):
        pid = make_product(stock=10)
        make_coupon(code="ONCE", max_uses=1)
        order = checkout.create_order(customer, [OrderLine(pid, 1)], PaymentMethod.IMMEDIATE, {},
                                      coupon_code="ONCE")
        assert coupon_uses("ONCE") == 1

        checkout.delete_order(order.id, admin)

        assert coupon_uses("ONCE") == 0

    def test_ledger_entries_survive(self, checkout, customer, admin, make_product, transactions_for):
        pid = make_product(stock=10)
        order = checkout.create_order(customer, [OrderLine(pid, 1)], PaymentMethod.DEFERRED_GATEWAY, {})
        checkout.set_payment_status(order.id, PaymentStatus.PAID, admin)

        checkout.delete_order(order.id, admin)

        assert len(transactions_for(order.id)) == 1

    def test_missing_order(self, checkout, admin):
        with pytest.raises(OrderNotFound):
            checkout.delete_order(777, admin)

    def test_deleting_twice(self, checkout, customer, admin, make_product, stock_of):
        pid = make_product(stock=10)
        order = checkout.create_order(customer, [OrderLine(pid, 4)], PaymentMethod.IMMEDIATE, {})
        checkout.delete_order(order.id, admin)

        with pytest.raises(OrderNotFound):
            checkout.delete_order(order.id, admin)
        assert stock_of(pid) == 10

    def test_admin_only(self, checkout, customer, make_product):
        pid = make_product()
        order = checkout.create_order(customer, [OrderLine(pid, 1)], PaymentMethod.IMMEDIATE, {})
        with pytest.raises(AuthorizationError):
            checkout.delete_order(order.id, customer)
