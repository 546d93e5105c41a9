from .models import (
    Alert,
    Allocation,
    Invoice,
    InvoiceRef,
    Lot,
    Payment,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    ReplenishmentLine,
    ReplenishmentRequest,
    Sale,
    SaleLine,
    StockMovement,
    Warehouse,
)
from .errors import (
    AppError,
    CapacityExceededError,
    InsufficientStockError,
    InvalidTransitionError,
    NegativeQuantityError,
    NotFoundError,
    PaymentExceedsBalanceError,
    ValidationError,
)

__all__ = [
    "Alert",
    "Allocation",
    "Invoice",
    "InvoiceRef",
    "Lot",
    "Payment",
    "Product",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "ReplenishmentLine",
    "ReplenishmentRequest",
    "Sale",
    "SaleLine",
    "StockMovement",
    "Warehouse",
    "AppError",
    "CapacityExceededError",
    "InsufficientStockError",
    "InvalidTransitionError",
    "NegativeQuantityError",
    "NotFoundError",
    "PaymentExceedsBalanceError",
    "ValidationError",
]
