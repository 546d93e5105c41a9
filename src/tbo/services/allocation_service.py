from __future__ import annotations

import logging
from typing import Callable, Optional

from tbo.domain.errors import InsufficientStockError, ValidationError
from tbo.domain.models import Allocation, Lot, MovementType
from tbo.repositories.sqlite_repo import RETURNS_WAREHOUSE, iso_date
from tbo.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork, joined
from tbo.services.lot_store import LotStore, Reference

log = logging.getLogger("tbo.stock")


class AllocationEngine:
    """Oldest-lot-first debit, newest-lot-first credit."""

    def __init__(self, repo, lots: LotStore, clock, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.lots = lots
        self.clock = clock
        self.uow_factory = uow_factory or (lambda: SqliteUnitOfWork(repo))

    def allocate(
        self,
        product_id: int,
        quantity: int,
        reference: Reference = None,
        uow: Optional[UnitOfWork] = None,
    ) -> list[Allocation]:
        quantity = int(quantity)
        if quantity <= 0:
            raise ValidationError("Quantity to allocate must be > 0.", quantity=quantity)

        with joined(uow, self.uow_factory) as u:
            self.lots.expire_stale(u.cur, product_id)
            candidates = self.repo.available_lots_fifo(u.cur, product_id, iso_date(self.clock.today()))
            available = sum(lot.quantity for lot in candidates)
            if available < quantity:
                raise InsufficientStockError(product_id, available, quantity)

            allocations: list[Allocation] = []
            remaining = quantity
            for lot in candidates:
                if remaining == 0:
                    break
                take = min(lot.quantity, remaining)
                self.lots.apply_delta(u.cur, lot, -take, MovementType.SALE, reference)
                allocations.append(Allocation(lot_id=lot.id, quantity=take))
                remaining -= take

        log.info(
            "stock_allocated product_id=%s qty=%s lots=%s ref=%s",
            product_id,
            quantity,
            ",".join(f"{a.lot_id}:{a.quantity}" for a in allocations),
            reference,
        )
        return allocations

    def release(
        self,
        product_id: int,
        quantity: int,
        reference: Reference = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Lot:
        """Put ``quantity`` back into the newest available lot, or a new lot in RETURNS."""
        quantity = int(quantity)
        if quantity <= 0:
            raise ValidationError("Quantity to release must be > 0.", quantity=quantity)

        with joined(uow, self.uow_factory) as u:
            target = self.repo.newest_available_lot(u.cur, product_id, iso_date(self.clock.today()))
            if target is not None:
                lot = self.lots.apply_delta(u.cur, target, quantity, MovementType.RELEASE, reference)
            else:
                returns = self.repo.fetch_returns_warehouse(u.cur)
                lot = self.lots.insert_lot(
                    u.cur,
                    product_id,
                    returns.id,
                    quantity,
                    location=RETURNS_WAREHOUSE,
                    movement_type=MovementType.RELEASE,
                    reference=reference,
                    check_capacity=False,
                    include_inactive=True,
                )

        log.info("stock_released product_id=%s qty=%s lot_id=%s ref=%s", product_id, quantity, lot.id, reference)
        return lot
