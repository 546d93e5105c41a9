from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Callable, Optional

from tbo.config import Settings
from tbo.domain.errors import CapacityExceededError, NegativeQuantityError, NotFoundError, ValidationError
from tbo.domain.models import AlertType, Lot, LotStatus, MovementType, StockMovement
from tbo.repositories.sqlite_repo import iso_date, iso_dt
from tbo.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork, joined
from tbo.services.periods import DateLike, as_date, as_datetime, day_range

log = logging.getLogger("tbo.stock")

Reference = Optional[tuple[str, int]]


@dataclass(frozen=True)
class ExpirationReport:
    expired: tuple[Lot, ...]
    expiring_soon: tuple[Lot, ...]


class LotStore:
    """Per-lot stock: creation, signed adjustments, expiry and the movement journal.

    Methods taking ``cur`` run inside the caller's unit of work; the public
    ones open their own when none is given.
    """

    def __init__(
        self,
        repo,
        clock,
        settings: Settings | None = None,
        alerts=None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.clock = clock
        self.settings = settings or Settings()
        self.alerts = alerts
        self.uow_factory = uow_factory or (lambda: SqliteUnitOfWork(repo))

    def _batch_no(self) -> str:
        return f"LOT{self.clock.now():%Y%m%d%H%M%S}{random.randint(0, 9999):04d}"

    # ---------- transactional building blocks ----------
    def insert_lot(
        self,
        cur,
        product_id: int,
        warehouse_id: int,
        quantity: int,
        *,
        entry_date: Optional[DateLike] = None,
        batch_no: Optional[str] = None,
        expiry_date: Optional[DateLike] = None,
        location: Optional[str] = None,
        movement_type: str = MovementType.ENTRY,
        reference: Reference = None,
        notes: Optional[str] = None,
        check_capacity: bool = True,
        include_inactive: bool = False,
    ) -> Lot:
        quantity = int(quantity)
        if quantity <= 0:
            raise ValidationError("Lot quantity must be > 0.", quantity=quantity)

        # released or received stock may belong to a product retired since
        if self.repo.fetch_product(cur, product_id, include_inactive=include_inactive) is None:
            raise NotFoundError("Product not found.", product_id=int(product_id))
        warehouse = self.repo.fetch_warehouse(cur, warehouse_id)
        if warehouse is None:
            raise NotFoundError("Warehouse not found.", warehouse_id=int(warehouse_id))

        if check_capacity and warehouse.capacity is not None:
            free = warehouse.capacity - self.repo.warehouse_used_quantity(cur, warehouse.id)
            if quantity > free:
                raise CapacityExceededError(warehouse.id, max(free, 0), quantity)

        entry = as_datetime(entry_date) if entry_date is not None else self.clock.now()
        expiry = as_date(expiry_date)
        batch = (batch_no or "").strip() or self._batch_no()
        where = (location or "").strip() or self.settings.default_location
        status = LotStatus.EXPIRED if expiry is not None and expiry <= self.clock.today() else LotStatus.AVAILABLE

        lot_id = self.repo.insert_lot(
            cur, product_id, warehouse.id, quantity, where, iso_dt(entry), batch, status, iso_date(expiry)
        )
        lot = Lot(
            id=lot_id,
            product_id=int(product_id),
            warehouse_id=warehouse.id,
            quantity=quantity,
            location=where,
            entry_date=entry,
            batch_no=batch,
            status=status,
            expiry_date=expiry,
        )
        self._journal(cur, lot, movement_type, quantity, quantity, reference, notes)
        log.info(
            "lot_created lot_id=%s product_id=%s warehouse_id=%s qty=%s batch=%s type=%s",
            lot.id,
            lot.product_id,
            lot.warehouse_id,
            quantity,
            batch,
            movement_type,
        )
        return lot

    def apply_delta(
        self,
        cur,
        lot: Lot,
        delta: int,
        movement_type: str = MovementType.ADJUSTMENT,
        reference: Reference = None,
        notes: Optional[str] = None,
    ) -> Lot:
        delta = int(delta)
        new_qty = lot.quantity + delta
        if new_qty < 0:
            raise NegativeQuantityError(lot.id, lot.quantity, delta)

        status = LotStatus.EXPIRED if lot.is_expired_on(self.clock.today()) else lot.status
        self.repo.update_lot(cur, lot.id, new_qty, status)
        updated = replace(lot, quantity=new_qty, status=status)
        if delta != 0:
            self._journal(cur, updated, movement_type, delta, new_qty, reference, notes)
        return updated

    def expire_stale(self, cur, product_id: Optional[int] = None) -> list[Lot]:
        """Mark lots past their expiry date as expired. Returns the lots that changed."""
        changed = []
        for lot in self.repo.stale_lots(cur, iso_date(self.clock.today()), product_id):
            self.repo.set_lot_status(cur, lot.id, LotStatus.EXPIRED)
            changed.append(replace(lot, status=LotStatus.EXPIRED))
        if changed:
            log.info("lots_expired count=%s product_id=%s", len(changed), product_id)
        return changed

    def _journal(self, cur, lot: Lot, movement_type: str, delta: int, qty_after: int, reference: Reference, notes) -> None:
        ref_type, ref_id = reference if reference is not None else (None, None)
        self.repo.insert_movement(
            cur, iso_dt(self.clock.now()), lot, movement_type, delta, qty_after, ref_type, ref_id, notes
        )

    # ---------- public operations ----------
    def create_lot(
        self,
        product_id: int,
        warehouse_id: int,
        quantity: int,
        entry_date: Optional[DateLike] = None,
        batch_no: Optional[str] = None,
        expiry_date: Optional[DateLike] = None,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Lot:
        expiry = as_date(expiry_date)
        if expiry is not None and expiry <= self.clock.today():
            raise ValidationError("Expiry date must be after today.", expiry_date=expiry.isoformat())

        with joined(uow, self.uow_factory) as u:
            return self.insert_lot(
                u.cur,
                int(product_id),
                int(warehouse_id),
                quantity,
                entry_date=entry_date,
                batch_no=batch_no,
                expiry_date=expiry_date,
                location=location,
                notes=notes,
            )

    def adjust_quantity(
        self, lot_id: int, delta: int, notes: Optional[str] = None, uow: Optional[UnitOfWork] = None
    ) -> Lot:
        with joined(uow, self.uow_factory) as u:
            lot = self.repo.fetch_lot(u.cur, lot_id)
            if lot is None:
                raise NotFoundError("Lot not found.", lot_id=int(lot_id))
            updated = self.apply_delta(u.cur, lot, delta, MovementType.ADJUSTMENT, notes=notes)
        log.info("lot_adjusted lot_id=%s delta=%s qty=%s status=%s", updated.id, int(delta), updated.quantity, updated.status)
        return updated

    def total_available(self, product_id: int, uow: Optional[UnitOfWork] = None) -> int:
        today = iso_date(self.clock.today())
        if uow is not None:
            return self.repo.total_available(uow.cur, product_id, today)
        return self.repo.available_quantity(product_id, today)

    def check_expirations(self, horizon_days: Optional[int] = None) -> ExpirationReport:
        horizon = self.settings.expiry_horizon_days if horizon_days is None else int(horizon_days)
        if horizon < 0:
            raise ValidationError("Horizon must be >= 0 days.", horizon_days=horizon)
        today = self.clock.today()

        with self.uow_factory() as uow:
            expired = self.expire_stale(uow.cur)
            expiring = self.repo.expiring_lots(uow.cur, iso_date(today), iso_date(today + timedelta(days=horizon)))

            if self.alerts is not None:
                for lot in expired:
                    self.alerts.emit(
                        uow.cur, AlertType.EXPIRY, lot.product_id, f"Lot {lot.batch_no} expired on {lot.expiry_date}"
                    )
                for lot in expiring:
                    self.alerts.emit(
                        uow.cur, AlertType.EXPIRY, lot.product_id, f"Lot {lot.batch_no} expires on {lot.expiry_date}"
                    )

        log.info("expiry_check expired=%s expiring_soon=%s horizon_days=%s", len(expired), len(expiring), horizon)
        return ExpirationReport(expired=tuple(expired), expiring_soon=tuple(expiring))

    def get_lot(self, lot_id: int) -> Lot:
        lot = self.repo.get_lot(lot_id)
        if lot is None:
            raise NotFoundError("Lot not found.", lot_id=int(lot_id))
        if lot.status != LotStatus.EXPIRED and lot.is_expired_on(self.clock.today()):
            with self.uow_factory() as uow:
                self.repo.set_lot_status(uow.cur, lot.id, LotStatus.EXPIRED)
            lot = replace(lot, status=LotStatus.EXPIRED)
        return lot

    def list_lots(
        self,
        product_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Lot]:
        if status is not None and status not in LotStatus.ALL:
            raise ValidationError(f"Unknown lot status: {status}")
        return self.repo.list_lots(product_id, warehouse_id, status)

    def set_status(self, lot_id: int, status: str) -> Lot:
        if status not in LotStatus.ALL:
            raise ValidationError(f"Unknown lot status: {status}")
        with self.uow_factory() as uow:
            lot = self.repo.fetch_lot(uow.cur, lot_id)
            if lot is None:
                raise NotFoundError("Lot not found.", lot_id=int(lot_id))
            if status == LotStatus.AVAILABLE and lot.is_expired_on(self.clock.today()):
                raise ValidationError("An expired lot cannot be made available again.", lot_id=lot.id)
            self.repo.set_lot_status(uow.cur, lot.id, status)
        log.info("lot_status_changed lot_id=%s from=%s to=%s", lot.id, lot.status, status)
        return replace(lot, status=status)

    def delete_lot(self, lot_id: int) -> None:
        with self.uow_factory() as uow:
            lot = self.repo.fetch_lot(uow.cur, lot_id)
            if lot is None:
                raise NotFoundError("Lot not found.", lot_id=int(lot_id))
            if lot.status == LotStatus.AVAILABLE and lot.quantity > 0:
                raise ValidationError(
                    "Cannot delete an available lot that still holds stock.", lot_id=lot.id, quantity=lot.quantity
                )
            self.repo.delete_lot(uow.cur, lot.id)
        log.info("lot_deleted lot_id=%s product_id=%s", lot.id, lot.product_id)

    def movements_for_product(self, product_id: int) -> list[StockMovement]:
        return self.repo.movements_for_product(int(product_id))

    def movements_between(self, start: DateLike, end: DateLike) -> list[StockMovement]:
        start_iso, end_iso = day_range(start, end)
        return self.repo.movements_between(start_iso, end_iso)
