from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from tbo.domain.errors import NotFoundError, ValidationError
from tbo.domain.models import Product, Warehouse
from tbo.domain.money import round2

log = logging.getLogger("tbo.stock")

CODE_PREFIX = "PROD"


class ProductService:
    def __init__(self, repo):
        self.repo = repo

    def _next_code(self) -> str:
        last = self.repo.last_product_code(CODE_PREFIX)
        suffix = (last or "")[len(CODE_PREFIX):]
        n = int(suffix) + 1 if suffix.isdigit() else 1
        return f"{CODE_PREFIX}{n:03d}"

    def add_product(
        self,
        name: str,
        purchase_price: float,
        sale_price: float,
        reorder_threshold: int = 0,
        perishable: bool = False,
        code: Optional[str] = None,
    ) -> Product:
        name = (name or "").strip()
        code = (code or "").strip() or self._next_code()
        if not name:
            raise ValidationError("Name is required.")
        if purchase_price < 0:
            raise ValidationError("Purchase price must be >= 0.")
        if sale_price < 0:
            raise ValidationError("Sale price must be >= 0.")
        if reorder_threshold < 0:
            raise ValidationError("Reorder threshold must be >= 0.")

        try:
            product_id = self.repo.add_product(
                code, name, float(purchase_price), float(sale_price), int(reorder_threshold), bool(perishable)
            )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Product code already exists: {code}", code=code) from e
        log.info("product_created product_id=%s code=%s", product_id, code)
        return self.get_product(product_id)

    def get_product(self, product_id: int) -> Product:
        p = self.repo.get_product_by_id(int(product_id))
        if not p:
            raise NotFoundError("Product not found.", product_id=int(product_id))
        return p

    def get_product_by_code(self, code: str) -> Product:
        p = self.repo.get_product_by_code((code or "").strip())
        if not p:
            raise NotFoundError("Product not found.", code=code)
        return p

    def list_products(self) -> list[Product]:
        return self.repo.list_products()

    def update_product(
        self, product_id: int, name: str, purchase_price: float, sale_price: float, reorder_threshold: int
    ) -> Product:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required.")
        if purchase_price < 0 or sale_price < 0:
            raise ValidationError("Prices must be >= 0.")
        if reorder_threshold < 0:
            raise ValidationError("Reorder threshold must be >= 0.")
        updated = self.repo.update_product(int(product_id), name, purchase_price, sale_price, reorder_threshold)
        if not updated:
            raise NotFoundError("Product not found.", product_id=int(product_id))
        return self.get_product(product_id)

    def deactivate_product(self, product_id: int) -> None:
        if not self.repo.deactivate_product(int(product_id)):
            raise NotFoundError("Product not found.", product_id=int(product_id))
        log.info("product_deactivated product_id=%s", product_id)

    def margin(self, product_id: int) -> tuple[float, Optional[float]]:
        """(unit margin, margin as a percentage of the purchase price or None when it is 0)."""
        p = self.get_product(product_id)
        amount = round2(p.sale_price - p.purchase_price)
        rate = round2(amount / p.purchase_price * 100) if p.purchase_price else None
        return amount, rate

    def add_warehouse(self, name: str, capacity: Optional[int] = None, location: Optional[str] = None) -> Warehouse:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Warehouse name is required.")
        if capacity is not None and int(capacity) < 0:
            raise ValidationError("Capacity must be >= 0.")
        try:
            warehouse_id = self.repo.add_warehouse(name, capacity, location)
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Warehouse already exists: {name}", name=name) from e
        log.info("warehouse_created warehouse_id=%s name=%s capacity=%s", warehouse_id, name, capacity)
        return self.repo.get_warehouse(warehouse_id)

    def list_warehouses(self) -> list[Warehouse]:
        return self.repo.list_warehouses()

    def warehouse_free_capacity(self, warehouse_id: int) -> Optional[int]:
        """Units that still fit, or None for an unbounded warehouse."""
        wh = self.repo.get_warehouse(int(warehouse_id))
        if wh is None:
            raise NotFoundError("Warehouse not found.", warehouse_id=int(warehouse_id))
        if wh.capacity is None:
            return None
        return max(wh.capacity - self.repo.used_capacity(wh.id), 0)
