from typing import Iterable, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from .errors import ProductNotFound
from .models import Product

log = structlog.get_logger().bind(component="product_stock")


class ProductStock:
    """Atomic stock counters. Callers own the surrounding DB transaction."""

    def conditional_decrement(self, db: Session, product_id: int, qty: int) -> bool:
        """Decrements stock only if at least ``qty`` units are available."""
        updated = (
            db.query(Product)
            .filter(Product.id == product_id, Product.stock >= qty)
            .update({Product.stock: Product.stock - qty}, synchronize_session=False)
        )
        return updated == 1

    def increment(self, db: Session, product_id: int, qty: int) -> None:
        updated = (
            db.query(Product)
            .filter(Product.id == product_id)
            .update({Product.stock: Product.stock + qty}, synchronize_session=False)
        )
        if not updated:
            # The product was removed from the catalog; nothing to give back to.
            log.warning("stock_increment_skipped", product_id=product_id, qty=qty)

    def reserve_all(self, db: Session, lines: Iterable[Tuple[int, int]]) -> Optional[int]:
        """Decrements every (product_id, qty) line or none of them.

        Returns None when all lines were reserved. On a shortfall the
        decrements already applied to earlier lines are given back and the
        id of the product that ran short is returned.
        """
        applied: List[Tuple[int, int]] = []
        for product_id, qty in lines:
            if not self.conditional_decrement(db, product_id, qty):
                log.info("stock_shortfall", product_id=product_id, qty=qty)
                for done_id, done_qty in reversed(applied):
                    self.increment(db, done_id, done_qty)
                return product_id
            applied.append((product_id, qty))
        return None

    def release_all(self, db: Session, lines: Iterable[Tuple[int, int]]) -> None:
        for product_id, qty in lines:
            self.increment(db, product_id, qty)

    def add_product(self, db: Session, name: str, price, stock: int) -> Product:
        product = Product(name=name, price=price, stock=stock)
        db.add(product)
        db.flush()
        return product

    def get_product(self, db: Session, product_id: int) -> Product:
        product = db.get(Product, product_id)
        if product is None:
            raise ProductNotFound(product_id)
        return product
