from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from tbo.domain.models import Invoice, InvoiceDirection, InvoiceStatus
from tbo.domain.money import round2
from tbo.services.periods import DateLike, as_date, day_range


@dataclass(frozen=True)
class LotValuation:
    lot_id: int
    batch_no: str
    product_code: str
    product_name: str
    warehouse: str
    quantity: int
    unit_cost: float

    @property
    def value(self) -> float:
        return round2(self.quantity * self.unit_cost)


@dataclass(frozen=True)
class AgingLine:
    invoice: Invoice
    paid: float
    remaining: float
    days_overdue: int


class ReportingService:
    """Read-only views: stock valuation, receivable/payable aging, cash flow, income statement, balance sheet."""

    def __init__(self, repo, clock):
        self.repo = repo
        self.clock = clock

    def lot_valuations(self, warehouse_id: Optional[int] = None) -> list[LotValuation]:
        return [
            LotValuation(
                lot_id=int(r[0]),
                batch_no=str(r[1]),
                product_code=str(r[2]),
                product_name=str(r[3]),
                warehouse=str(r[4]),
                quantity=int(r[5]),
                unit_cost=float(r[6]),
            )
            for r in self.repo.lot_valuation_rows(warehouse_id)
        ]

    def inventory_summary(self) -> dict:
        per_warehouse: dict[str, dict] = {}
        for v in self.lot_valuations():
            row = per_warehouse.setdefault(v.warehouse, {"warehouse": v.warehouse, "lots": 0, "units": 0, "value": 0.0})
            row["lots"] += 1
            row["units"] += v.quantity
            row["value"] = round2(row["value"] + v.value)
        rows = sorted(per_warehouse.values(), key=lambda r: r["warehouse"])
        return {
            "warehouses": rows,
            "total_units": sum(r["units"] for r in rows),
            "total_value": round2(sum(r["value"] for r in rows)),
        }

    def invoice_aging(self, direction: str) -> list[AgingLine]:
        today = self.clock.today()
        lines = []
        for inv in self.repo.list_invoices(direction, InvoiceStatus.OPEN):
            paid = round2(self.repo.paid_amount(inv.ref))
            lines.append(
                AgingLine(
                    invoice=inv,
                    paid=paid,
                    remaining=round2(round2(inv.total) - paid),
                    days_overdue=max((today - inv.due_date).days, 0),
                )
            )
        return lines

    def cash_flow(self, start: DateLike, end: DateLike) -> dict:
        first, last = as_date(start), as_date(end)
        inflow, outflow = self.repo.payment_totals_between(first.isoformat(), last.isoformat())
        by_day = self.repo.payment_daily_totals(first.isoformat(), last.isoformat())

        daily = []
        day = first
        while day <= last:
            received, paid_out = by_day.get(day.isoformat(), (0.0, 0.0))
            daily.append(
                {"date": day.isoformat(), "in": round2(received), "out": round2(paid_out), "net": round2(received - paid_out)}
            )
            day += timedelta(days=1)

        return {
            "inflows": round2(inflow),
            "outflows": round2(outflow),
            "net": round2(inflow - outflow),
            "receivables": round2(sum(a.remaining for a in self.invoice_aging(InvoiceDirection.CUSTOMER))),
            "payables": round2(sum(a.remaining for a in self.invoice_aging(InvoiceDirection.SUPPLIER))),
            "daily": daily,
        }

    def income_statement(self, start: DateLike, end: DateLike) -> dict:
        start_iso, end_iso = day_range(start, end)
        pretax, with_tax, cogs = self.repo.sales_income_between(start_iso, end_iso)
        purchases = self.repo.received_purchases_total(start_iso, end_iso)
        return {
            "sales_pretax": round2(pretax),
            "sales_with_tax": round2(with_tax),
            "vat_collected": round2(with_tax - pretax),
            "purchases_received": round2(purchases),
            "cost_of_goods_sold": round2(cogs),
            "commercial_margin": round2(pretax - cogs),
        }

    def balance_sheet(self) -> dict:
        """
        Simplified balance sheet as of today.

        Assets: available stock at purchase price, open customer balances and the
        cash position (customer receipts - supplier payments, floored at 0).
        Liabilities: open supplier balances; equity is the difference.
        """
        today = self.clock.today()
        stock = self.inventory_summary()["total_value"]
        receivables = round2(sum(a.remaining for a in self.invoice_aging(InvoiceDirection.CUSTOMER)))
        payables = round2(sum(a.remaining for a in self.invoice_aging(InvoiceDirection.SUPPLIER)))
        received, paid_out = self.repo.payment_totals_until(today.isoformat())
        cash = round2(max(0.0, received - paid_out))

        total_assets = round2(stock + receivables + cash)
        equity = round2(total_assets - payables)
        total_liabilities = round2(equity + payables)
        return {
            "date": today.isoformat(),
            "assets": {"stock": stock, "receivables": receivables, "cash": cash, "total": total_assets},
            "liabilities": {"equity": equity, "payables": payables, "total": total_liabilities},
            "balanced": abs(total_assets - total_liabilities) < 0.01,
        }

    def financial_dashboard(self) -> dict:
        today = self.clock.today()
        month_start = today.replace(day=1)
        next_month = (month_start + timedelta(days=32)).replace(day=1)
        income = self.income_statement(month_start, next_month - timedelta(days=1))
        return {
            "month": month_start.strftime("%Y-%m"),
            "revenue_month": income["sales_with_tax"],
            "expenses_month": income["purchases_received"],
            "receivables": round2(sum(a.remaining for a in self.invoice_aging(InvoiceDirection.CUSTOMER))),
            "stock_value": self.inventory_summary()["total_value"],
        }

    def export_financial_report_excel(self, path: str, start: DateLike, end: DateLike) -> None:
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, end_row: int, end_col: int):
            ref = f"A{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(name="TableStyleMedium9", showRowStripes=True, showColumnStripes=False)
            ws.add_table(tab)

        first, last = as_date(start), as_date(end)
        income = self.income_statement(first, last)
        flow = self.cash_flow(first, last)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Financial report"
        ws["A1"].font = Font(bold=True, size=14)
        ws["A3"] = "Window"
        ws["B3"] = f"{first.isoformat()}  ->  {last.isoformat()}"

        rows = [
            ("Sales (pre-tax)", income["sales_pretax"]),
            ("Sales (tax incl.)", income["sales_with_tax"]),
            ("VAT collected", income["vat_collected"]),
            ("Cost of goods sold", income["cost_of_goods_sold"]),
            ("Commercial margin", income["commercial_margin"]),
            ("Purchases received", income["purchases_received"]),
            ("Cash in (customers)", flow["inflows"]),
            ("Cash out (suppliers)", flow["outflows"]),
            ("Net cash flow", flow["net"]),
            ("Receivables", flow["receivables"]),
            ("Payables", flow["payables"]),
        ]
        for i, (label, val) in enumerate(rows):
            r = 5 + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = float(val)
            money(ws[f"B{r}"])
        set_widths(ws, {"A": 28, "B": 34})

        # -------- 2) Aging --------
        ws2 = wb.create_sheet("Aging")
        ws2.append(["Direction", "Number", "Issue date", "Due date", "Total", "Paid", "Remaining", "Days overdue"])
        bold_row(ws2, 1)
        for direction in (InvoiceDirection.CUSTOMER, InvoiceDirection.SUPPLIER):
            for a in self.invoice_aging(direction):
                ws2.append([
                    direction, a.invoice.number,
                    a.invoice.issue_date.isoformat(), a.invoice.due_date.isoformat(),
                    float(a.invoice.total), float(a.paid), float(a.remaining), int(a.days_overdue),
                ])
                for col in ("E", "F", "G"):
                    money(ws2[f"{col}{ws2.max_row}"])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 12, "B": 18, "C": 12, "D": 12, "E": 14, "F": 14, "G": 14, "H": 14})
        if ws2.max_row >= 2:
            add_table(ws2, "AgingDetail", 1, ws2.max_row, 8)

        # -------- 3) Stock valuation --------
        ws3 = wb.create_sheet("Stock valuation")
        ws3.append(["Lot ID", "Batch", "Code", "Product", "Warehouse", "Qty", "Unit cost", "Value"])
        bold_row(ws3, 1)
        for v in self.lot_valuations():
            ws3.append([
                v.lot_id, v.batch_no, v.product_code, v.product_name, v.warehouse,
                v.quantity, float(v.unit_cost), float(v.value),
            ])
            money(ws3[f"G{ws3.max_row}"])
            money(ws3[f"H{ws3.max_row}"])
        ws3.freeze_panes = "A2"
        set_widths(ws3, {"A": 8, "B": 24, "C": 10, "D": 30, "E": 16, "F": 8, "G": 14, "H": 14})
        if ws3.max_row >= 2:
            add_table(ws3, "StockValuation", 1, ws3.max_row, 8)

        wb.save(path)
