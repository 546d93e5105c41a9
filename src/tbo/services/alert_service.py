from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from tbo.domain.errors import NotFoundError
from tbo.domain.models import Alert, AlertType, Product
from tbo.repositories.sqlite_repo import iso_date, iso_dt
from tbo.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork

log = logging.getLogger("tbo.stock")


@dataclass(frozen=True)
class StockLevelReport:
    out_of_stock: tuple[Product, ...]
    low_stock: tuple[tuple[Product, int], ...]


class AlertService:
    def __init__(self, repo, clock, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.clock = clock
        self.uow_factory = uow_factory or (lambda: SqliteUnitOfWork(repo))

    def emit(self, cur, alert_type: str, product_id: int, message: str) -> bool:
        """Insert an alert unless the same one is still unread. Returns True when inserted."""
        if self.repo.find_unread_alert(cur, alert_type, product_id, message) is not None:
            return False
        alert_id = self.repo.insert_alert(cur, alert_type, product_id, message, iso_dt(self.clock.now()))
        log.info("alert_emitted alert_id=%s type=%s product_id=%s", alert_id, alert_type, product_id)
        return True

    def check_stock_levels(self) -> StockLevelReport:
        out_of_stock: list[Product] = []
        low_stock: list[tuple[Product, int]] = []

        with self.uow_factory() as uow:
            for product, available in self.repo.available_by_product(uow.cur, iso_date(self.clock.today())):
                if available <= 0:
                    out_of_stock.append(product)
                    self.emit(uow.cur, AlertType.OUT_OF_STOCK, product.id, f"Product {product.code} is out of stock")
                elif available < product.reorder_threshold:
                    low_stock.append((product, available))
                    self.emit(
                        uow.cur,
                        AlertType.LOW_STOCK,
                        product.id,
                        f"Product {product.code} is below its reorder threshold ({product.reorder_threshold})",
                    )

        return StockLevelReport(out_of_stock=tuple(out_of_stock), low_stock=tuple(low_stock))

    def list_unread(self) -> list[Alert]:
        return self.repo.list_unread_alerts()

    def mark_read(self, alert_id: int) -> None:
        if not self.repo.mark_alert_read(int(alert_id)):
            raise NotFoundError("Unread alert not found.", alert_id=int(alert_id))
