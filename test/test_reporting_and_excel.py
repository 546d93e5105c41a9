from datetime import date, datetime
from pathlib import Path

import pytest
from conftest import add_product, add_warehouse, build_app
from openpyxl import Workbook, load_workbook

from tbo.domain.errors import ValidationError
from tbo.domain.models import InvoiceDirection


def _trade(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app, purchase_price=60.0, sale_price=100.0)
    po = app.purchases.create_order(9, [{"product_id": p.id, "qty": 10, "unit_cost": 60.0}])
    app.purchases.validate_order(po.id)
    reception = app.purchases.receive(po.id, wh)
    sale = app.sales.create_sale(1, [{"product_id": p.id, "qty": 4, "unit_price": 100.0}])
    validation = app.sales.validate(sale.id)
    return app, p, reception, validation


def test_lot_valuation_and_inventory_summary(tmp_path: Path):
    app, p, reception, _validation = _trade(tmp_path)

    values = app.reporting.lot_valuations()
    assert [(v.lot_id, v.quantity, v.value) for v in values] == [(reception.lots[0].id, 6, 360.0)]

    summary = app.reporting.inventory_summary()
    assert summary["total_units"] == 6
    assert summary["total_value"] == 360.0
    assert summary["warehouses"][0]["warehouse"] == "Main"


def test_invoice_aging_counts_days_overdue(tmp_path: Path):
    app, _p, _reception, validation = _trade(tmp_path)
    app.ledger.record_payment(validation.invoice.ref, 100.0)

    app.clock.set(datetime(2024, 4, 10, 9, 0, 0))
    aging = app.reporting.invoice_aging(InvoiceDirection.CUSTOMER)

    assert len(aging) == 1
    assert aging[0].paid == 100.0
    assert aging[0].remaining == 372.0
    assert aging[0].days_overdue == 10


def test_cash_flow_and_income_statement(tmp_path: Path):
    app, _p, reception, validation = _trade(tmp_path)
    app.ledger.record_payment(validation.invoice.ref, 200.0)
    app.ledger.record_payment(reception.invoice.ref, 150.0, payment_date=date(2024, 3, 2))

    flow = app.reporting.cash_flow(date(2024, 3, 1), date(2024, 3, 3))
    assert (flow["inflows"], flow["outflows"], flow["net"]) == (200.0, 150.0, 50.0)
    assert flow["receivables"] == 272.0
    assert flow["payables"] == 450.0
    assert [d["net"] for d in flow["daily"]] == [200.0, -150.0, 0.0]

    income = app.reporting.income_statement(date(2024, 3, 1), date(2024, 3, 31))
    assert income["sales_pretax"] == 400.0
    assert income["sales_with_tax"] == 472.0
    assert income["vat_collected"] == 72.0
    assert income["cost_of_goods_sold"] == 240.0
    assert income["commercial_margin"] == 160.0
    assert income["purchases_received"] == 600.0


def test_balance_sheet_balances_assets_and_liabilities(tmp_path: Path):
    app, _p, reception, validation = _trade(tmp_path)
    app.ledger.record_payment(validation.invoice.ref, 200.0)
    app.ledger.record_payment(reception.invoice.ref, 150.0)

    sheet = app.reporting.balance_sheet()

    assert sheet["date"] == "2024-03-01"
    assert sheet["assets"] == {"stock": 360.0, "receivables": 272.0, "cash": 50.0, "total": 682.0}
    assert sheet["liabilities"] == {"equity": 232.0, "payables": 450.0, "total": 682.0}
    assert sheet["balanced"] is True


def test_balance_sheet_floors_negative_cash(tmp_path: Path):
    app, _p, reception, _validation = _trade(tmp_path)
    app.ledger.record_payment(reception.invoice.ref, 150.0)

    sheet = app.reporting.balance_sheet()

    assert sheet["assets"]["cash"] == 0.0
    assert sheet["assets"]["receivables"] == 472.0


def test_financial_dashboard_covers_current_month(tmp_path: Path):
    app, _p, _reception, validation = _trade(tmp_path)
    app.ledger.record_payment(validation.invoice.ref, 200.0)

    board = app.reporting.financial_dashboard()

    assert board == {
        "month": "2024-03",
        "revenue_month": 472.0,
        "expenses_month": 600.0,
        "receivables": 272.0,
        "stock_value": 360.0,
    }

    app.clock.set(datetime(2024, 4, 2, 9, 0, 0))
    assert app.reporting.financial_dashboard()["revenue_month"] == 0.0


def test_export_financial_report_excel(tmp_path: Path):
    app, _p, _reception, _validation = _trade(tmp_path)
    out = tmp_path / "report.xlsx"

    app.reporting.export_financial_report_excel(str(out), date(2024, 3, 1), date(2024, 3, 31))

    wb = load_workbook(out)
    assert wb.sheetnames == ["Summary", "Aging", "Stock valuation"]
    assert wb["Summary"]["A5"].value == "Sales (pre-tax)"
    assert wb["Summary"]["B5"].value == 400.0
    assert wb["Aging"].max_row == 3
    assert wb["Stock valuation"]["F2"].value == 6


def test_import_stock_entries_creates_lots_and_skips_bad_rows(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app, capacity=100)
    p = add_product(app)

    path = tmp_path / "entries.xlsx"
    wb = Workbook()
    ws = wb.active
    ws.append(["Code", "Quantity", "Batch_No", "Expiry_Date"])
    ws.append([p.code, 20, "B-1", datetime(2024, 6, 30)])
    ws.append([p.code, 5, None, "2024-05-01"])
    ws.append(["NOPE", 5, None, None])
    ws.append([p.code, "abc", None, None])
    ws.append([p.code, 500, None, None])
    wb.save(path)

    ok, skipped = app.excel.import_stock_entries_excel(str(path), wh)

    assert (ok, skipped) == (2, 3)
    lots = app.lots.list_lots(product_id=p.id)
    assert sorted(lot.quantity for lot in lots) == [5, 20]
    assert {lot.expiry_date for lot in lots} == {date(2024, 6, 30), date(2024, 5, 1)}


def test_import_requires_headers(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    path = tmp_path / "bad.xlsx"
    wb = Workbook()
    wb.active.append(["code", "qty"])
    wb.save(path)

    with pytest.raises(ValidationError, match="Missing column header"):
        app.excel.import_stock_entries_excel(str(path), wh)
