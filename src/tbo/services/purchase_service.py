from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from tbo.domain.errors import NotFoundError, ValidationError
from tbo.domain.lifecycle import require_purchase_transition
from tbo.domain.models import Invoice, InvoiceDirection, Lot, MovementType, PurchaseOrder, PurchaseStatus
from tbo.domain.money import round2
from tbo.repositories.sqlite_repo import iso_date, iso_dt
from tbo.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork
from tbo.services.lot_store import LotStore
from tbo.services.payment_ledger import PaymentLedger
from tbo.services.periods import DateLike, as_date

log = logging.getLogger("tbo.stock")


@dataclass(frozen=True)
class Reception:
    order: PurchaseOrder
    lots: tuple[Lot, ...]
    invoice: Invoice


class PurchaseService:
    def __init__(
        self,
        repo,
        lots: LotStore,
        ledger: PaymentLedger,
        clock,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.lots = lots
        self.ledger = ledger
        self.clock = clock
        self.uow_factory = uow_factory or (lambda: SqliteUnitOfWork(repo))

    def _load(self, cur, po_id: int) -> PurchaseOrder:
        po = self.repo.fetch_purchase_order(cur, po_id)
        if po is None:
            raise NotFoundError("Purchase order not found.", purchase_order_id=int(po_id))
        return po

    def create_order(
        self,
        supplier_id: int,
        items: Iterable[dict],
        order_date: Optional[DateLike] = None,
        expected_date: Optional[DateLike] = None,
        notes: Optional[str] = None,
    ) -> PurchaseOrder:
        """
        items: [{product_id, qty, unit_cost, expiry_date?}]
        """
        items = list(items)
        if not items:
            raise ValidationError("Purchase order has no lines.")

        lines: list[dict] = []
        total = 0.0
        for it in items:
            qty = int(it["qty"])
            unit_cost = float(it["unit_cost"])
            if qty <= 0:
                raise ValidationError("Qty must be >= 1.", qty=qty)
            if unit_cost < 0:
                raise ValidationError("Unit cost must be >= 0.", unit_cost=unit_cost)
            product = self.repo.get_product_by_id(int(it["product_id"]))
            if not product:
                raise NotFoundError("Product not found/active.", product_id=int(it["product_id"]))
            expiry = as_date(it.get("expiry_date"))
            lines.append(
                {"product_id": product.id, "qty": qty, "unit_cost": unit_cost, "expiry_date": iso_date(expiry)}
            )
            total += unit_cost * qty

        ordered = as_date(order_date) or self.clock.today()
        expected = as_date(expected_date)
        if expected is not None and expected < ordered:
            raise ValidationError("Expected delivery date is before the order date.")

        with self.uow_factory() as uow:
            po_id = self.repo.insert_purchase_order(
                uow.cur,
                int(supplier_id),
                iso_date(ordered),
                iso_date(expected),
                round2(total),
                PurchaseStatus.DRAFT,
                notes,
                iso_dt(self.clock.now()),
                lines,
            )
            po = self._load(uow.cur, po_id)

        log.info("purchase_order_created po_id=%s number=%s lines=%s total=%.2f", po.id, po.number, len(lines), po.total)
        return po

    def validate_order(self, po_id: int) -> PurchaseOrder:
        return self._transition(po_id, PurchaseStatus.VALIDATED)

    def cancel_order(self, po_id: int) -> PurchaseOrder:
        return self._transition(po_id, PurchaseStatus.CANCELLED)

    def _transition(self, po_id: int, target: str) -> PurchaseOrder:
        with self.uow_factory() as uow:
            po = self._load(uow.cur, po_id)
            require_purchase_transition(po.status, target)
            self.repo.update_purchase_status(uow.cur, po.id, target, iso_dt(self.clock.now()))
            updated = self._load(uow.cur, po.id)
        log.info("purchase_order_status po_id=%s from=%s to=%s", po.id, po.status, target)
        return updated

    def receive(self, po_id: int, warehouse_id: int) -> Reception:
        """Turn every line of a validated order into a lot and raise the supplier invoice."""
        with self.uow_factory() as uow:
            po = self._load(uow.cur, po_id)
            require_purchase_transition(po.status, PurchaseStatus.RECEIVED)

            batch = f"LOT{self.clock.today():%Y%m%d}{po.id}"
            created: list[Lot] = []
            for line in po.lines:
                created.append(
                    self.lots.insert_lot(
                        uow.cur,
                        line.product_id,
                        int(warehouse_id),
                        line.qty,
                        batch_no=batch,
                        expiry_date=line.expiry_date,
                        movement_type=MovementType.RECEPTION,
                        reference=("purchase_order", po.id),
                        include_inactive=True,
                    )
                )

            invoice = self.ledger.create_invoice(uow.cur, InvoiceDirection.SUPPLIER, po.id, po.supplier_id, po.total)
            self.repo.update_purchase_status(uow.cur, po.id, PurchaseStatus.RECEIVED, iso_dt(self.clock.now()))
            received = self._load(uow.cur, po.id)

        log.info(
            "purchase_order_received po_id=%s warehouse_id=%s lots=%s invoice=%s",
            po.id,
            warehouse_id,
            len(created),
            invoice.number,
        )
        return Reception(order=received, lots=tuple(created), invoice=invoice)

    def get_order(self, po_id: int) -> PurchaseOrder:
        po = self.repo.get_purchase_order(int(po_id))
        if po is None:
            raise NotFoundError("Purchase order not found.", purchase_order_id=int(po_id))
        return po

    def list_orders(self, status: Optional[str] = None) -> list[PurchaseOrder]:
        return self.repo.list_purchase_orders(status)
