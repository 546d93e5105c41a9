from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from tbo.config import Settings, load_settings
from tbo.domain.clock import Clock, SystemClock
from tbo.repositories.sqlite_repo import SqliteRepository
from tbo.repositories.unit_of_work import SqliteUnitOfWork
from tbo.services.alert_service import AlertService
from tbo.services.allocation_service import AllocationEngine
from tbo.services.excel_service import ExcelService
from tbo.services.lot_store import LotStore
from tbo.services.payment_ledger import PaymentLedger
from tbo.services.product_service import ProductService
from tbo.services.purchase_service import PurchaseService
from tbo.services.replenishment_service import ReplenishmentService
from tbo.services.reporting_service import ReportingService
from tbo.services.sales_service import SalesService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    settings: Settings
    clock: Clock
    products: ProductService
    alerts: AlertService
    lots: LotStore
    allocator: AllocationEngine
    ledger: PaymentLedger
    sales: SalesService
    purchases: PurchaseService
    replenishments: ReplenishmentService
    reporting: ReportingService
    excel: ExcelService


def build_container(db_path: Path | str, settings: Settings | None = None, clock: Clock | None = None) -> AppContainer:
    settings = settings or load_settings()
    clock = clock or SystemClock()

    repo = SqliteRepository(db_path, timeout=settings.db_timeout_seconds)
    repo.init_db()

    def uow_factory():
        return SqliteUnitOfWork(repo)

    products = ProductService(repo)
    alerts = AlertService(repo, clock, uow_factory)
    lots = LotStore(repo, clock, settings, alerts, uow_factory)
    allocator = AllocationEngine(repo, lots, clock, uow_factory)
    ledger = PaymentLedger(repo, clock, settings, uow_factory)
    sales = SalesService(repo, allocator, ledger, clock, settings, uow_factory)
    purchases = PurchaseService(repo, lots, ledger, clock, uow_factory)
    replenishments = ReplenishmentService(repo, lots, clock, uow_factory)
    reporting = ReportingService(repo, clock)
    excel = ExcelService(repo, lots)

    return AppContainer(
        repo=repo,
        settings=settings,
        clock=clock,
        products=products,
        alerts=alerts,
        lots=lots,
        allocator=allocator,
        ledger=ledger,
        sales=sales,
        purchases=purchases,
        replenishments=replenishments,
        reporting=reporting,
        excel=excel,
    )
