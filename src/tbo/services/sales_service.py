from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from tbo.config import Settings
from tbo.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from tbo.domain.lifecycle import require_sale_transition
from tbo.domain.models import Allocation, Invoice, InvoiceDirection, Sale, SaleStatus
from tbo.domain.money import round2, with_tax
from tbo.domain.scopes import ALL_RECORDS, RecordScope
from tbo.repositories.sqlite_repo import iso_date, iso_dt
from tbo.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork
from tbo.services.allocation_service import AllocationEngine
from tbo.services.payment_ledger import PaymentLedger
from tbo.services.periods import DateLike, as_date, day_range

log = logging.getLogger("tbo.sales")


@dataclass(frozen=True)
class SaleValidation:
    sale: Sale
    invoice: Invoice
    allocations: dict[int, list[Allocation]]


class SalesService:
    def __init__(
        self,
        repo,
        allocator: AllocationEngine,
        ledger: PaymentLedger,
        clock,
        settings: Settings | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.allocator = allocator
        self.ledger = ledger
        self.clock = clock
        self.settings = settings or Settings()
        self.uow_factory = uow_factory or (lambda: SqliteUnitOfWork(repo))

    def _load(self, cur, sale_id: int) -> Sale:
        sale = self.repo.fetch_sale(cur, sale_id)
        if sale is None:
            raise NotFoundError("Sale not found.", sale_id=int(sale_id))
        return sale

    def _price(self, items: Iterable[dict], discount: float) -> tuple[list[dict], float, float]:
        items = list(items)
        if not items:
            raise ValidationError("Sale has no lines.")
        discount = float(discount or 0.0)
        if discount < 0:
            raise ValidationError("Discount must be >= 0.", discount=discount)

        lines: list[dict] = []
        gross = 0.0
        for it in items:
            qty = int(it["qty"])
            if qty <= 0:
                raise ValidationError("Qty must be >= 1.", qty=qty)
            product = self.repo.get_product_by_id(int(it["product_id"]))
            if not product:
                raise NotFoundError("Product not found.", product_id=int(it["product_id"]))
            unit_price = float(it["unit_price"]) if it.get("unit_price") is not None else product.sale_price
            if unit_price < 0:
                raise ValidationError("Unit price must be >= 0.", unit_price=unit_price)
            lines.append({"product_id": product.id, "qty": qty, "unit_price": unit_price})
            gross += qty * unit_price

        pretax = round2(gross - discount)
        if pretax < 0:
            raise ValidationError("Discount exceeds the sale amount.", discount=discount, gross=round2(gross))
        return lines, pretax, with_tax(pretax, self.settings.vat_rate)

    def create_sale(
        self,
        customer_id: int,
        items: Iterable[dict],
        discount: float = 0.0,
        sale_date: Optional[DateLike] = None,
        seller_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Sale:
        """
        items: [{product_id, qty, unit_price}]; unit_price defaults to the product sale price.
        The sale starts as a draft and does not touch stock.
        """
        lines, pretax, total_with_tax = self._price(items, discount)
        discount = float(discount or 0.0)
        day = as_date(sale_date) or self.clock.today()

        with self.uow_factory() as uow:
            sale_id = self.repo.insert_sale(
                uow.cur,
                int(customer_id),
                (int(seller_id) if seller_id is not None else None),
                iso_date(day),
                discount,
                pretax,
                total_with_tax,
                SaleStatus.DRAFT,
                notes,
                iso_dt(self.clock.now()),
                lines,
            )
            sale = self._load(uow.cur, sale_id)

        log.info(
            "sale_created sale_id=%s number=%s lines=%s pretax=%.2f ttc=%.2f seller=%s",
            sale.id,
            sale.number,
            len(lines),
            pretax,
            total_with_tax,
            seller_id,
        )
        return sale

    def update_draft(
        self,
        sale_id: int,
        items: Optional[Iterable[dict]] = None,
        discount: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> Sale:
        """Replace the lines and/or discount of a draft sale; totals are recomputed."""
        with self.uow_factory() as uow:
            sale = self._load(uow.cur, sale_id)
            if sale.status != SaleStatus.DRAFT:
                raise ValidationError("Only draft sales can be edited.", sale_id=sale.id, status=sale.status)

            if items is None:
                items = [{"product_id": ln.product_id, "qty": ln.qty, "unit_price": ln.unit_price} for ln in sale.lines]
            new_discount = sale.discount if discount is None else float(discount)
            lines, pretax, total_with_tax = self._price(items, new_discount)
            self.repo.replace_sale_lines(
                uow.cur,
                sale.id,
                new_discount,
                pretax,
                total_with_tax,
                sale.notes if notes is None else notes,
                iso_dt(self.clock.now()),
                lines,
            )
            updated = self._load(uow.cur, sale.id)

        log.info(
            "sale_updated sale_id=%s lines=%s pretax=%.2f ttc=%.2f", sale.id, len(lines), pretax, total_with_tax
        )
        return updated

    def validate(self, sale_id: int) -> SaleValidation:
        with self.uow_factory() as uow:
            sale = self._load(uow.cur, sale_id)
            require_sale_transition(sale.status, SaleStatus.VALIDATED)
            if not sale.lines:
                raise ValidationError("Sale has no lines.", sale_id=sale.id)

            # Aggregate per product so two lines cannot both claim the same units
            needed: Counter[int] = Counter()
            for line in sale.lines:
                needed[line.product_id] += line.qty
            for product_id, qty in needed.items():
                self.allocator.lots.expire_stale(uow.cur, product_id)
                available = self.allocator.lots.total_available(product_id, uow=uow)
                if qty > available:
                    raise InsufficientStockError(product_id, available, qty)

            allocations: dict[int, list[Allocation]] = {}
            for line in sale.lines:
                allocations[line.id] = self.allocator.allocate(
                    line.product_id, line.qty, reference=("sale", sale.id), uow=uow
                )

            invoice = self.ledger.create_invoice(
                uow.cur, InvoiceDirection.CUSTOMER, sale.id, sale.customer_id, sale.total_with_tax
            )
            self.repo.update_sale_status(uow.cur, sale.id, SaleStatus.VALIDATED, iso_dt(self.clock.now()))
            validated = self._load(uow.cur, sale.id)

        log.info("sale_validated sale_id=%s invoice=%s total=%.2f", sale.id, invoice.number, invoice.total)
        return SaleValidation(sale=validated, invoice=invoice, allocations=allocations)

    def cancel(self, sale_id: int) -> Sale:
        with self.uow_factory() as uow:
            sale = self._load(uow.cur, sale_id)
            require_sale_transition(sale.status, SaleStatus.CANCELLED)

            if sale.status == SaleStatus.VALIDATED:
                for line in sale.lines:
                    self.allocator.release(line.product_id, line.qty, reference=("sale", sale.id), uow=uow)
                invoice = self.repo.fetch_invoice_for_source(uow.cur, InvoiceDirection.CUSTOMER, sale.id)
                if invoice is not None:
                    self.ledger.cancel_invoice(uow.cur, invoice.ref)

            self.repo.update_sale_status(uow.cur, sale.id, SaleStatus.CANCELLED, iso_dt(self.clock.now()))
            cancelled = self._load(uow.cur, sale.id)

        log.info("sale_cancelled sale_id=%s previous=%s", sale.id, sale.status)
        return cancelled

    def deliver(self, sale_id: int) -> Sale:
        with self.uow_factory() as uow:
            sale = self._load(uow.cur, sale_id)
            require_sale_transition(sale.status, SaleStatus.DELIVERED)
            self.repo.update_sale_status(uow.cur, sale.id, SaleStatus.DELIVERED, iso_dt(self.clock.now()))
            delivered = self._load(uow.cur, sale.id)
        log.info("sale_delivered sale_id=%s", sale.id)
        return delivered

    def get_sale(self, sale_id: int) -> Sale:
        sale = self.repo.get_sale(int(sale_id))
        if sale is None:
            raise NotFoundError("Sale not found.", sale_id=int(sale_id))
        return sale

    def list_sales(
        self,
        scope: RecordScope = ALL_RECORDS,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
        status: Optional[str] = None,
    ) -> list[Sale]:
        start_iso = iso_date(as_date(start)) if start is not None else None
        end_iso = day_range(end, end)[1] if end is not None else None
        return self.repo.list_sales(scope, start_iso, end_iso, status)

    def sales_statistics(self, start: DateLike, end: DateLike, top: int = 10) -> dict:
        start_iso, end_iso = day_range(start, end)
        daily = self.repo.sales_daily_totals(start_iso, end_iso)
        count = sum(n for _day, n, _total in daily)
        revenue = round2(sum(total for _day, _n, total in daily))
        return {
            "count": count,
            "revenue": revenue,
            "average": round2(revenue / count) if count else 0.0,
            "daily": [{"date": day, "count": n, "total": round2(total)} for day, n, total in daily],
            "top_products": [
                {"code": code, "name": name, "units": units, "amount": round2(amount)}
                for code, name, units, amount in self.repo.top_products_sold(start_iso, end_iso, top)
            ],
        }
