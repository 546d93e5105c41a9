import sys
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def build_app(tmp_path: Path, now: datetime | None = None, name: str = "t.db"):
    from tbo.application.container import build_container
    from tbo.config import Settings
    from tbo.domain.clock import FixedClock

    clock = FixedClock(now or datetime(2024, 3, 1, 9, 0, 0))
    return build_container(tmp_path / name, settings=Settings(db_timeout_seconds=10.0), clock=clock)


def add_warehouse(app, name: str = "Main", capacity=None) -> int:
    return app.products.add_warehouse(name, capacity, "Dakar").id


def add_product(app, name: str = "Rice 25kg", purchase_price: float = 60.0, sale_price: float = 100.0, reorder_threshold: int = 0):
    return app.products.add_product(name, purchase_price, sale_price, reorder_threshold)


def lot_quantity(app, lot_id: int) -> int:
    return app.repo.get_lot(lot_id).quantity
