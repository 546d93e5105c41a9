import logging
from datetime import date
from pathlib import Path

import pytest
from conftest import add_product, add_warehouse, build_app

from tbo import main as cli
from tbo.config import load_settings
from tbo.domain.errors import AppError, InsufficientStockError
from tbo.repositories.sqlite_repo import SqliteRepository


def test_migrations_seed_returns_warehouse_once(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "m.db")
    repo.init_db()
    repo.init_db()

    names = [w.name for w in repo.list_warehouses()]
    assert names.count("RETURNS") == 1
    assert repo.integrity_check() == "ok"

    conn = repo._conn()
    versions = [r[0] for r in conn.execute("SELECT version FROM schema_migrations ORDER BY version")]
    conn.close()
    assert versions == [1, 2, 3]


def test_lot_quantity_check_constraint(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    p = add_product(app)
    lot = app.lots.create_lot(p.id, wh, 1)

    conn = app.repo._conn()
    try:
        with pytest.raises(Exception):
            conn.execute("UPDATE lots SET quantity=-1 WHERE id=?", (lot.id,))
    finally:
        conn.close()


def test_migration_failure_restores_db(tmp_path: Path, monkeypatch):
    db = tmp_path / "restore.db"
    repo = SqliteRepository(db)
    repo.init_db()
    repo.add_warehouse("Keep", 10, None)

    conn = repo._conn()
    conn.execute("DELETE FROM schema_migrations WHERE version >= 2")
    conn.close()

    def broken(_cur):
        raise RuntimeError("boom")

    monkeypatch.setattr(repo, "_migration_v2_returns_and_indexes", broken)
    with pytest.raises(RuntimeError, match="Original database restored"):
        repo.init_db()

    assert "Keep" in [w.name for w in repo.list_warehouses()]


def test_errors_expose_details():
    err = InsufficientStockError(3, 2, 5)

    assert isinstance(err, AppError)
    assert err.to_dict() == {
        "error": "insufficient_stock",
        "message": "Not enough stock for product 3. Available: 2, requested: 5",
        "product_id": 3,
        "available": 2,
        "requested": 5,
    }


def test_settings_from_environment():
    settings = load_settings({"TBO_VAT_RATE": "0.2", "TBO_PAYMENT_TERMS_DAYS": "45", "TBO_DEFAULT_LOCATION": "Dock"})

    assert settings.vat_rate == 0.2
    assert settings.payment_terms_days == 45
    assert settings.default_location == "Dock"
    assert settings.expiry_horizon_days == 7


def test_cli_runs_scheduled_sweeps(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setenv("TBO_HOME", str(tmp_path / "home"))
    monkeypatch.setattr(logging.getLogger(), "handlers", [logging.NullHandler()])
    db = tmp_path / "cli.db"
    app = build_app(tmp_path, name="cli.db")
    add_product(app)

    assert cli.main(["--db", str(db), "check-stock"]) == 0
    assert "out_of_stock=1" in capsys.readouterr().out

    assert cli.main(["--db", str(db), "check-expirations", "--horizon-days", "3"]) == 0
    assert "expired=0" in capsys.readouterr().out

    out = tmp_path / "r.xlsx"
    assert cli.main(["--db", str(db), "export-report", str(out), "--start", "2024-03-01", "--end", date(2024, 3, 31).isoformat()]) == 0
    assert out.exists()
