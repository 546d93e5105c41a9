from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from tbo.config import Settings
from tbo.domain.errors import NotFoundError, PaymentExceedsBalanceError, ValidationError
from tbo.domain.models import (
    Invoice,
    InvoiceDirection,
    InvoiceRef,
    InvoiceStatus,
    Payment,
    PaymentMethod,
)
from tbo.domain.money import round2
from tbo.repositories.sqlite_repo import iso_date, iso_dt
from tbo.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork, joined
from tbo.services.periods import DateLike, as_date

log = logging.getLogger("tbo.ledger")

# A payment falling short of the balance by less than this settles the invoice.
SETTLE_TOLERANCE = 1.0
PAID_EPSILON = 0.01


@dataclass(frozen=True)
class InvoiceBalance:
    invoice: Invoice
    paid: float
    remaining: float


def _check_direction(ref: InvoiceRef) -> None:
    if ref.direction not in (InvoiceDirection.CUSTOMER, InvoiceDirection.SUPPLIER):
        raise ValidationError(f"Unknown invoice direction: {ref.direction}")


class PaymentLedger:
    def __init__(
        self,
        repo,
        clock,
        settings: Settings | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.clock = clock
        self.settings = settings or Settings()
        self.uow_factory = uow_factory or (lambda: SqliteUnitOfWork(repo))

    def create_invoice(self, cur, direction: str, source_id: int, party_id: int, total: float) -> Invoice:
        issue = self.clock.today()
        due = issue + timedelta(days=self.settings.payment_terms_days)
        invoice_id = self.repo.insert_invoice(
            cur, direction, source_id, party_id, iso_date(issue), iso_date(due), round2(total), InvoiceStatus.UNPAID
        )
        invoice = self.repo.fetch_invoice(cur, InvoiceRef(direction, invoice_id))
        log.info(
            "invoice_created direction=%s invoice_id=%s number=%s source_id=%s total=%.2f due=%s",
            direction,
            invoice.id,
            invoice.number,
            source_id,
            invoice.total,
            invoice.due_date,
        )
        return invoice

    def _remaining(self, cur, invoice: Invoice) -> tuple[float, float]:
        paid = round2(self.repo.sum_payments(cur, invoice.ref))
        return paid, round2(round2(invoice.total) - paid)

    def recompute_status(self, cur, ref: InvoiceRef) -> str:
        invoice = self.repo.fetch_invoice(cur, ref)
        if invoice is None:
            raise NotFoundError("Invoice not found.", direction=ref.direction, invoice_id=int(ref.id))
        if invoice.status == InvoiceStatus.CANCELLED:
            return invoice.status

        paid, remaining = self._remaining(cur, invoice)
        if abs(remaining) < PAID_EPSILON:
            status = InvoiceStatus.PAID
        elif paid > 0:
            status = InvoiceStatus.PARTIALLY_PAID
        else:
            status = InvoiceStatus.UNPAID

        if status != invoice.status:
            self.repo.set_invoice_status(cur, ref, status)
            log.info("invoice_status invoice=%s:%s from=%s to=%s", ref.direction, ref.id, invoice.status, status)
        return status

    def record_payment(
        self,
        invoice_ref: InvoiceRef,
        amount: float,
        payment_date: Optional[DateLike] = None,
        method: str = PaymentMethod.CASH,
        reference: Optional[str] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Payment:
        _check_direction(invoice_ref)
        if method not in PaymentMethod.ALL:
            raise ValidationError(f"Unknown payment method: {method}")
        amount = round2(float(amount))
        if amount <= 0:
            raise ValidationError("Payment amount must be > 0.", amount=amount)
        paid_on = as_date(payment_date) or self.clock.today()

        with joined(uow, self.uow_factory) as u:
            invoice = self.repo.fetch_invoice(u.cur, invoice_ref)
            if invoice is None:
                raise NotFoundError(
                    "Invoice not found.", direction=invoice_ref.direction, invoice_id=int(invoice_ref.id)
                )
            if invoice.status == InvoiceStatus.CANCELLED:
                raise ValidationError("Cannot pay a cancelled invoice.", invoice=invoice.number)

            _paid, remaining = self._remaining(u.cur, invoice)
            if amount > remaining:
                raise PaymentExceedsBalanceError(amount, remaining)
            if amount < remaining and abs(amount - remaining) < SETTLE_TOLERANCE:
                amount = remaining

            payment_id = self.repo.insert_payment(
                u.cur,
                invoice_ref,
                amount,
                iso_date(paid_on),
                method,
                (reference or "").strip() or None,
                iso_dt(self.clock.now()),
            )
            status = self.recompute_status(u.cur, invoice_ref)

        log.info(
            "payment_recorded payment_id=%s invoice=%s amount=%.2f method=%s status=%s",
            payment_id,
            invoice.number,
            amount,
            method,
            status,
        )
        return Payment(
            id=payment_id,
            invoice=invoice_ref,
            amount=amount,
            payment_date=paid_on,
            method=method,
            reference=(reference or "").strip() or None,
        )

    def cancel_invoice(self, cur, ref: InvoiceRef) -> None:
        invoice = self.repo.fetch_invoice(cur, ref)
        if invoice is None:
            raise NotFoundError("Invoice not found.", direction=ref.direction, invoice_id=int(ref.id))
        if invoice.status == InvoiceStatus.CANCELLED:
            return
        self.repo.set_invoice_status(cur, ref, InvoiceStatus.CANCELLED)
        log.info("invoice_cancelled invoice=%s previous=%s", invoice.number, invoice.status)

    def get_invoice(self, ref: InvoiceRef) -> Invoice:
        _check_direction(ref)
        invoice = self.repo.get_invoice(ref)
        if invoice is None:
            raise NotFoundError("Invoice not found.", direction=ref.direction, invoice_id=int(ref.id))
        return invoice

    def invoice_for(self, direction: str, source_id: int) -> Optional[Invoice]:
        return self.repo.get_invoice_for_source(direction, int(source_id))

    def invoice_balance(self, ref: InvoiceRef) -> InvoiceBalance:
        invoice = self.get_invoice(ref)
        paid = round2(self.repo.paid_amount(ref))
        return InvoiceBalance(invoice=invoice, paid=paid, remaining=round2(round2(invoice.total) - paid))

    def payments_for_invoice(self, ref: InvoiceRef) -> list[Payment]:
        _check_direction(ref)
        return self.repo.payments_for_invoice(ref)

    def list_open_invoices(self, direction: str) -> list[Invoice]:
        _check_direction(InvoiceRef(direction, 0))
        return self.repo.list_invoices(direction, InvoiceStatus.OPEN)

    def payment_statistics(self, start: DateLike, end: DateLike) -> dict:
        start_iso, end_iso = iso_date(as_date(start)), iso_date(as_date(end))
        received, disbursed = self.repo.payment_totals_between(start_iso, end_iso)
        return {
            "customer_total": round2(received),
            "supplier_total": round2(disbursed),
            "net": round2(received - disbursed),
            "by_method": [
                {"method": method, "total": round2(total), "count": count}
                for method, total, count in self.repo.payment_totals_by_method(start_iso, end_iso)
            ],
        }
