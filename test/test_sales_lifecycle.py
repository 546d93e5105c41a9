from datetime import date, datetime
from pathlib import Path

import pytest
from conftest import add_product, add_warehouse, build_app, lot_quantity

from tbo.domain.errors import InsufficientStockError, InvalidTransitionError, NotFoundError, ValidationError
from tbo.domain.models import InvoiceDirection, InvoiceStatus, LotStatus, SaleStatus
from tbo.domain.scopes import RecordScope, scope_for


def _stocked(tmp_path: Path, qty: int = 10):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app, sale_price=100.0)
    lot = app.lots.create_lot(p.id, wh, qty)
    return app, p, lot


def test_create_sale_is_draft_with_totals_and_no_stock_effect(tmp_path: Path):
    app, p, lot = _stocked(tmp_path)

    sale = app.sales.create_sale(customer_id=7, items=[{"product_id": p.id, "qty": 3, "unit_price": 50.0}], discount=10.0)

    assert sale.status == SaleStatus.DRAFT
    assert sale.number == f"V2024{sale.id:06d}"
    assert sale.total_pretax == 140.0
    assert sale.total_with_tax == 165.2
    assert lot_quantity(app, lot.id) == 10


def test_unit_price_defaults_to_product_sale_price(tmp_path: Path):
    app, p, _lot = _stocked(tmp_path)

    sale = app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 2}])

    assert sale.lines[0].unit_price == 100.0
    assert sale.total_pretax == 200.0


def test_create_sale_validates_input(tmp_path: Path):
    app, p, _lot = _stocked(tmp_path)

    with pytest.raises(ValidationError):
        app.sales.create_sale(customer_id=1, items=[])
    with pytest.raises(ValidationError):
        app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 0}])
    with pytest.raises(ValidationError):
        app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 1}], discount=500.0)
    with pytest.raises(NotFoundError):
        app.sales.create_sale(customer_id=1, items=[{"product_id": 999, "qty": 1}])


def test_validate_allocates_and_invoices(tmp_path: Path):
    app, p, lot = _stocked(tmp_path)
    sale = app.sales.create_sale(customer_id=7, items=[{"product_id": p.id, "qty": 7, "unit_price": 100.0}])

    result = app.sales.validate(sale.id)

    assert result.sale.status == SaleStatus.VALIDATED
    assert result.invoice.total == 826.00
    assert result.invoice.status == InvoiceStatus.UNPAID
    assert result.invoice.issue_date == date(2024, 3, 1)
    assert result.invoice.due_date == date(2024, 3, 31)
    assert result.invoice.number == f"F2024{result.invoice.id:06d}"
    assert result.allocations[sale.lines[0].id][0].quantity == 7
    assert lot_quantity(app, lot.id) == 3


def test_validate_precheck_aggregates_lines_and_persists_nothing(tmp_path: Path):
    app, p, lot = _stocked(tmp_path, qty=10)
    other = add_product(app, name="Oil 5L")
    other_lot = app.lots.create_lot(other.id, lot.warehouse_id, 50)
    sale = app.sales.create_sale(
        customer_id=1,
        items=[
            {"product_id": other.id, "qty": 5},
            {"product_id": p.id, "qty": 6},
            {"product_id": p.id, "qty": 6},
        ],
    )

    with pytest.raises(InsufficientStockError) as exc:
        app.sales.validate(sale.id)

    assert exc.value.details["requested"] == 12
    assert exc.value.details["available"] == 10
    assert lot_quantity(app, lot.id) == 10
    assert lot_quantity(app, other_lot.id) == 50
    assert app.sales.get_sale(sale.id).status == SaleStatus.DRAFT
    assert app.ledger.invoice_for(InvoiceDirection.CUSTOMER, sale.id) is None


def test_cancel_validated_sale_restores_stock_and_cancels_invoice(tmp_path: Path):
    app, p, lot = _stocked(tmp_path)
    sale = app.sales.create_sale(customer_id=7, items=[{"product_id": p.id, "qty": 7, "unit_price": 100.0}])
    validation = app.sales.validate(sale.id)
    app.ledger.record_payment(validation.invoice.ref, 100.0)

    cancelled = app.sales.cancel(sale.id)

    assert cancelled.status == SaleStatus.CANCELLED
    assert lot_quantity(app, lot.id) == 10
    assert app.lots.total_available(p.id) == 10
    assert app.ledger.get_invoice(validation.invoice.ref).status == InvoiceStatus.CANCELLED


def test_cancel_draft_has_no_stock_effect(tmp_path: Path):
    app, p, lot = _stocked(tmp_path)
    sale = app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 2}])

    app.sales.cancel(sale.id)

    assert app.sales.get_sale(sale.id).status == SaleStatus.CANCELLED
    assert len(app.lots.movements_for_product(p.id)) == 1
    assert lot_quantity(app, lot.id) == 10


def test_invalid_transitions_are_rejected(tmp_path: Path):
    app, p, _lot = _stocked(tmp_path)
    draft = app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 1}])

    with pytest.raises(InvalidTransitionError):
        app.sales.deliver(draft.id)

    app.sales.validate(draft.id)
    delivered = app.sales.deliver(draft.id)
    assert delivered.status == SaleStatus.DELIVERED

    with pytest.raises(InvalidTransitionError) as exc:
        app.sales.cancel(draft.id)
    assert exc.value.details == {"entity": "Sale", "current": "delivered", "target": "cancelled"}

    with pytest.raises(InvalidTransitionError):
        app.sales.validate(draft.id)


def test_list_sales_respects_seller_scope(tmp_path: Path):
    app, p, _lot = _stocked(tmp_path)
    mine = app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 1}], seller_id=5)
    app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 1}], seller_id=6)

    assert [s.id for s in app.sales.list_sales(scope_for("seller", 5))] == [mine.id]
    assert len(app.sales.list_sales(scope_for("admin", 1))) == 2
    assert app.sales.list_sales(RecordScope(seller_id=99)) == []


def test_sales_statistics_exclude_cancelled(tmp_path: Path):
    app, p, _lot = _stocked(tmp_path)
    kept = app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 1, "unit_price": 100.0}])
    dropped = app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 2, "unit_price": 100.0}])
    app.sales.cancel(dropped.id)
    app.clock.set(datetime(2024, 3, 2, 9, 0, 0))
    app.sales.create_sale(customer_id=2, items=[{"product_id": p.id, "qty": 1, "unit_price": 50.0}])

    stats = app.sales.sales_statistics(date(2024, 3, 1), date(2024, 3, 2))

    assert stats["count"] == 2
    assert stats["revenue"] == round(kept.total_with_tax + 59.0, 2)
    assert [d["date"] for d in stats["daily"]] == ["2024-03-01", "2024-03-02"]
    assert stats["top_products"][0]["units"] == 2


def test_validate_rolls_back_debited_lots_when_invoicing_fails(tmp_path: Path, monkeypatch):
    app, p, lot = _stocked(tmp_path, qty=10)
    other = add_product(app, name="Oil 5L")
    other_lot = app.lots.create_lot(other.id, lot.warehouse_id, 50)
    sale = app.sales.create_sale(
        customer_id=1,
        items=[{"product_id": p.id, "qty": 4}, {"product_id": other.id, "qty": 5}],
    )

    def failing_invoice(*_args, **_kwargs):
        raise RuntimeError("invoice numbering unavailable")

    monkeypatch.setattr(app.ledger, "create_invoice", failing_invoice)
    with pytest.raises(RuntimeError):
        app.sales.validate(sale.id)

    assert lot_quantity(app, lot.id) == 10
    assert lot_quantity(app, other_lot.id) == 50
    assert [m.movement_type for m in app.lots.movements_for_product(p.id)] == ["entry"]
    assert [m.movement_type for m in app.lots.movements_for_product(other.id)] == ["entry"]
    assert app.sales.get_sale(sale.id).status == SaleStatus.DRAFT
    assert app.ledger.invoice_for(InvoiceDirection.CUSTOMER, sale.id) is None


def test_cancel_after_product_retired_returns_stock(tmp_path: Path):
    app, p, lot = _stocked(tmp_path, qty=5)
    sale = app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 5}])
    app.sales.validate(sale.id)
    app.lots.set_status(lot.id, LotStatus.DAMAGED)
    app.products.deactivate_product(p.id)

    cancelled = app.sales.cancel(sale.id)

    assert cancelled.status == SaleStatus.CANCELLED
    returns = [w for w in app.products.list_warehouses() if w.name == "RETURNS"][0]
    returned = app.lots.list_lots(product_id=p.id, warehouse_id=returns.id)
    assert [(x.quantity, x.status) for x in returned] == [(5, LotStatus.AVAILABLE)]


def test_update_draft_recomputes_totals(tmp_path: Path):
    app, p, _lot = _stocked(tmp_path)
    sale = app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 3, "unit_price": 100.0}])

    cheaper = app.sales.update_draft(sale.id, discount=50.0)
    assert (cheaper.total_pretax, cheaper.total_with_tax) == (250.0, 295.0)
    assert [(ln.qty, ln.unit_price) for ln in cheaper.lines] == [(3, 100.0)]

    relined = app.sales.update_draft(sale.id, items=[{"product_id": p.id, "qty": 2, "unit_price": 50.0}], discount=10.0)
    assert relined.total_pretax == 90.0
    assert relined.total_with_tax == 106.2
    assert len(relined.lines) == 1
    assert relined.status == SaleStatus.DRAFT


def test_update_draft_refuses_validated_sale(tmp_path: Path):
    app, p, _lot = _stocked(tmp_path)
    sale = app.sales.create_sale(customer_id=1, items=[{"product_id": p.id, "qty": 1}])
    app.sales.validate(sale.id)

    with pytest.raises(ValidationError):
        app.sales.update_draft(sale.id, discount=5.0)

    assert app.sales.get_sale(sale.id).discount == 0.0
