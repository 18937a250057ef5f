from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from .actors import Actor, require_admin
from .coupons import CouponBook
from .errors import ConflictError, ValidationError
from .models import Coupon, Product, Transaction
from .status import DiscountType
from .stock import ProductStock
from .transactions import TransactionLedger
from .unit_of_work import UnitOfWork

log = structlog.get_logger().bind(component="backoffice")


class BackOffice:
    """Admin access to the transaction ledger, product stock and coupons."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.ledger = TransactionLedger()
        self.stock = ProductStock()
        self.coupons = CouponBook()

    # Transactions

    def list_transactions(self, actor: Actor) -> List[Transaction]:
        require_admin(actor)
        return self.uow.run(self.ledger.list_active)

    def list_trashed_transactions(self, actor: Actor) -> List[Transaction]:
        require_admin(actor)
        return self.uow.run(self.ledger.list_trashed)

    def get_transaction(self, transaction_id: int, actor: Actor) -> Transaction:
        require_admin(actor)
        return self.uow.run(self.ledger.get, transaction_id)

    def soft_delete_transaction(self, transaction_id: int, actor: Actor) -> Transaction:
        require_admin(actor)
        tx = self.uow.run(self.ledger.soft_delete, transaction_id)
        log.info("transaction_trashed", transaction_id=transaction_id, actor=actor.user_id)
        return tx

    def restore_transaction(self, transaction_id: int, actor: Actor) -> Transaction:
        require_admin(actor)
        tx = self.uow.run(self.ledger.restore, transaction_id)
        log.info("transaction_restored", transaction_id=transaction_id, actor=actor.user_id)
        return tx

    # Products

    def add_product(self, name: str, price: Decimal, stock: int, actor: Actor) -> Product:
        require_admin(actor)
        if Decimal(price) < 0 or stock < 0:
            raise ValidationError("Price and stock must be non-negative")
        return self.uow.run(self.stock.add_product, name, price, stock)

    def get_product(self, product_id: int) -> Product:
        return self.uow.run(self.stock.get_product, product_id)

    def restock(self, product_id: int, qty: int, actor: Actor) -> Product:
        require_admin(actor)
        if qty <= 0:
            raise ValidationError("Restock quantity must be positive")

        def add_units(db: Session) -> Product:
            product = self.stock.get_product(db, product_id)
            self.stock.increment(db, product_id, qty)
            db.refresh(product)
            return product

        product = self.uow.run(add_units)
        log.info("product_restocked", product_id=product_id, qty=qty, stock=product.stock)
        return product

    # Coupons

    def create_coupon(self, code: str, discount_type: DiscountType, discount_value: Decimal,
                      actor: Actor, max_uses: int = 0, expires_at: Optional[datetime] = None,
                      active: bool = True) -> Coupon:
        require_admin(actor)
        if max_uses < 0 or Decimal(discount_value) < 0:
            raise ValidationError("max_uses and discount_value must be non-negative")
        discount_type = DiscountType(discount_type)
        if expires_at is not None and expires_at.tzinfo is not None:
            expires_at = expires_at.astimezone(timezone.utc).replace(tzinfo=None)
        if discount_type == DiscountType.PERCENTAGE and Decimal(discount_value) > 100:
            raise ValidationError("A percentage discount cannot exceed 100")

        def create(db: Session) -> Coupon:
            if self.coupons.find(db, code) is not None:
                raise ConflictError(f"Coupon already exists: {code.strip().upper()}")
            return self.coupons.create(db, code, discount_type, discount_value,
                                       max_uses=max_uses, expires_at=expires_at, active=active)

        return self.uow.run(create)
