from datetime import date, datetime
from pathlib import Path

import pytest
from conftest import add_product, add_warehouse, build_app, lot_quantity

from tbo.domain.errors import CapacityExceededError, NegativeQuantityError, ValidationError
from tbo.domain.models import AlertType, LotStatus, MovementType


def test_create_lot_defaults_and_entry_movement(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)

    lot = app.lots.create_lot(p.id, wh, 12)

    assert lot.quantity == 12
    assert lot.status == LotStatus.AVAILABLE
    assert lot.location == "Zone-A"
    assert lot.batch_no.startswith("LOT20240301090000")
    assert len(lot.batch_no) == len("LOT20240301090000") + 4
    assert lot.entry_date == datetime(2024, 3, 1, 9, 0, 0)

    moves = app.lots.movements_for_product(p.id)
    assert [(m.movement_type, m.qty_delta, m.qty_after) for m in moves] == [(MovementType.ENTRY, 12, 12)]


def test_capacity_is_enforced_per_warehouse(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app, capacity=10)
    p = add_product(app)
    app.lots.create_lot(p.id, wh, 7)

    with pytest.raises(CapacityExceededError) as exc:
        app.lots.create_lot(p.id, wh, 4)

    assert exc.value.details == {"warehouse_id": wh, "free_capacity": 3, "requested": 4}
    assert app.products.warehouse_free_capacity(wh) == 3
    assert len(app.lots.list_lots(warehouse_id=wh)) == 1


def test_unbounded_warehouse_accepts_any_quantity(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app, capacity=None)
    p = add_product(app)

    app.lots.create_lot(p.id, wh, 100_000)

    assert app.products.warehouse_free_capacity(wh) is None


def test_adjust_quantity_refuses_negative_and_changes_nothing(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)
    lot = app.lots.create_lot(p.id, wh, 5)

    with pytest.raises(NegativeQuantityError) as exc:
        app.lots.adjust_quantity(lot.id, -6)

    assert exc.value.details["current"] == 5
    assert exc.value.details["delta"] == -6
    assert lot_quantity(app, lot.id) == 5
    assert len(app.lots.movements_for_product(p.id)) == 1


def test_adjust_quantity_forces_expired_status_on_stale_lot(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)
    lot = app.lots.create_lot(p.id, wh, 5, expiry_date=date(2024, 3, 10))

    app.clock.set(datetime(2024, 3, 11, 8, 0, 0))
    updated = app.lots.adjust_quantity(lot.id, +2, notes="recount")

    assert updated.quantity == 7
    assert updated.status == LotStatus.EXPIRED


def test_total_available_ignores_expired_reserved_and_stale_lots(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)
    app.lots.create_lot(p.id, wh, 4)
    stale = app.lots.create_lot(p.id, wh, 3, expiry_date=date(2024, 3, 5))
    reserved = app.lots.create_lot(p.id, wh, 2)
    app.lots.set_status(reserved.id, LotStatus.RESERVED)

    assert app.lots.total_available(p.id) == 7

    app.clock.set(datetime(2024, 3, 6, 9, 0, 0))
    assert app.lots.total_available(p.id) == 4
    # not mutated by the read
    assert app.repo.get_lot(stale.id).status == LotStatus.AVAILABLE
    assert app.lots.get_lot(stale.id).status == LotStatus.EXPIRED


def test_check_expirations_marks_expired_reports_soon_and_alerts_once(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)
    old = app.lots.create_lot(p.id, wh, 3, batch_no="B-OLD", expiry_date=date(2024, 3, 3))
    soon = app.lots.create_lot(p.id, wh, 3, batch_no="B-SOON", expiry_date=date(2024, 3, 9))
    app.lots.create_lot(p.id, wh, 3, batch_no="B-LATER", expiry_date=date(2024, 4, 30))

    app.clock.set(datetime(2024, 3, 4, 7, 0, 0))
    report = app.lots.check_expirations(horizon_days=7)

    assert [lot.id for lot in report.expired] == [old.id]
    assert [lot.id for lot in report.expiring_soon] == [soon.id]
    assert app.repo.get_lot(old.id).status == LotStatus.EXPIRED
    assert app.repo.get_lot(soon.id).status == LotStatus.AVAILABLE

    alerts = app.alerts.list_unread()
    assert {a.type for a in alerts} == {AlertType.EXPIRY}
    assert len(alerts) == 2

    again = app.lots.check_expirations(horizon_days=7)
    assert again.expired == ()
    assert len(app.alerts.list_unread()) == 2


def test_check_expirations_expires_lot_on_its_expiry_date(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)
    lot = app.lots.create_lot(p.id, wh, 5, expiry_date=date(2024, 3, 2))

    app.clock.set(datetime(2024, 3, 2, 0, 0, 0))
    report = app.lots.check_expirations(horizon_days=7)

    assert [x.id for x in report.expired] == [lot.id]
    assert report.expiring_soon == ()
    assert app.repo.get_lot(lot.id).status == LotStatus.EXPIRED


def test_check_expirations_horizon_end_is_inclusive(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)
    edge = app.lots.create_lot(p.id, wh, 1, expiry_date=date(2024, 3, 8))
    app.lots.create_lot(p.id, wh, 1, expiry_date=date(2024, 3, 9))

    report = app.lots.check_expirations(horizon_days=7)

    assert report.expired == ()
    assert [x.id for x in report.expiring_soon] == [edge.id]


def test_create_lot_requires_expiry_after_today(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)

    with pytest.raises(ValidationError):
        app.lots.create_lot(p.id, wh, 5, expiry_date=date(2024, 3, 1))
    with pytest.raises(ValidationError):
        app.lots.create_lot(p.id, wh, 5, expiry_date="2024-02-28")

    assert app.lots.list_lots(product_id=p.id) == []
    tomorrow = app.lots.create_lot(p.id, wh, 5, expiry_date=date(2024, 3, 2))
    assert tomorrow.status == LotStatus.AVAILABLE


def test_delete_lot_refuses_available_stock(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)
    lot = app.lots.create_lot(p.id, wh, 2)

    with pytest.raises(ValidationError):
        app.lots.delete_lot(lot.id)

    app.lots.set_status(lot.id, LotStatus.DAMAGED)
    app.lots.delete_lot(lot.id)
    assert app.lots.list_lots(product_id=p.id) == []


def test_movements_between_uses_inclusive_days(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)
    lot = app.lots.create_lot(p.id, wh, 10)
    app.clock.set(datetime(2024, 3, 2, 23, 59, 0))
    app.lots.adjust_quantity(lot.id, -1)
    app.clock.set(datetime(2024, 3, 3, 0, 1, 0))
    app.lots.adjust_quantity(lot.id, -1)

    moves = app.lots.movements_between(date(2024, 3, 1), date(2024, 3, 2))

    assert [m.qty_after for m in moves] == [9, 10]
