from datetime import date
from pathlib import Path

import pytest
from conftest import add_product, add_warehouse, build_app

from tbo.domain.errors import CapacityExceededError, InvalidTransitionError, ValidationError
from tbo.domain.models import InvoiceDirection, InvoiceStatus, MovementType, PurchaseStatus


def test_receive_creates_one_lot_per_line_and_supplier_invoice(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    rice = add_product(app)
    milk = app.products.add_product("Milk 1L", 0.8, 1.2, perishable=True)
    po = app.purchases.create_order(
        supplier_id=4,
        items=[
            {"product_id": rice.id, "qty": 10, "unit_cost": 60.0},
            {"product_id": milk.id, "qty": 24, "unit_cost": 0.8, "expiry_date": "2024-04-15"},
        ],
        expected_date=date(2024, 3, 5),
    )
    assert po.status == PurchaseStatus.DRAFT
    assert po.total == 619.2
    assert po.number == f"CA2024{po.id:06d}"

    app.purchases.validate_order(po.id)
    reception = app.purchases.receive(po.id, wh)

    assert reception.order.status == PurchaseStatus.RECEIVED
    assert [lot.quantity for lot in reception.lots] == [10, 24]
    assert {lot.batch_no for lot in reception.lots} == {f"LOT20240301{po.id}"}
    assert reception.lots[1].expiry_date == date(2024, 4, 15)
    assert reception.invoice.direction == InvoiceDirection.SUPPLIER
    assert reception.invoice.total == 619.2
    assert reception.invoice.status == InvoiceStatus.UNPAID
    assert reception.invoice.due_date == date(2024, 3, 31)
    assert reception.invoice.number == f"FF2024{reception.invoice.id:06d}"
    assert app.lots.movements_for_product(milk.id)[0].movement_type == MovementType.RECEPTION


def test_receive_requires_validated_order(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)
    po = app.purchases.create_order(1, [{"product_id": p.id, "qty": 1, "unit_cost": 1.0}])

    with pytest.raises(InvalidTransitionError):
        app.purchases.receive(po.id, wh)

    app.purchases.cancel_order(po.id)
    with pytest.raises(InvalidTransitionError):
        app.purchases.validate_order(po.id)


def test_receive_is_all_or_nothing_when_capacity_runs_out(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app, capacity=15)
    p = add_product(app)
    q = add_product(app, name="Sugar")
    po = app.purchases.create_order(
        1,
        [
            {"product_id": p.id, "qty": 10, "unit_cost": 1.0},
            {"product_id": q.id, "qty": 10, "unit_cost": 1.0},
        ],
    )
    app.purchases.validate_order(po.id)

    with pytest.raises(CapacityExceededError):
        app.purchases.receive(po.id, wh)

    assert app.lots.list_lots(warehouse_id=wh) == []
    assert app.purchases.get_order(po.id).status == PurchaseStatus.VALIDATED
    assert app.ledger.invoice_for(InvoiceDirection.SUPPLIER, po.id) is None


def test_create_order_validation(tmp_path: Path):
    app = build_app(tmp_path)
    p = add_product(app)

    with pytest.raises(ValidationError):
        app.purchases.create_order(1, [])
    with pytest.raises(ValidationError):
        app.purchases.create_order(1, [{"product_id": p.id, "qty": 1, "unit_cost": -1.0}])
    with pytest.raises(ValidationError):
        app.purchases.create_order(
            1, [{"product_id": p.id, "qty": 1, "unit_cost": 1.0}], order_date=date(2024, 3, 5), expected_date=date(2024, 3, 1)
        )

    assert app.purchases.list_orders() == []
