from .lot_store import LotStore
from .allocation_service import AllocationEngine
from .sales_service import SalesService
from .payment_ledger import PaymentLedger
from .purchase_service import PurchaseService
from .replenishment_service import ReplenishmentService
from .product_service import ProductService
from .alert_service import AlertService
from .reporting_service import ReportingService
from .excel_service import ExcelService

__all__ = [
    "LotStore",
    "AllocationEngine",
    "SalesService",
    "PaymentLedger",
    "PurchaseService",
    "ReplenishmentService",
    "ProductService",
    "AlertService",
    "ReportingService",
    "ExcelService",
]
