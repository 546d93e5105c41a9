from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional


class LotStatus:
    AVAILABLE = "available"
    RESERVED = "reserved"
    EXPIRED = "expired"
    DAMAGED = "damaged"

    ALL = (AVAILABLE, RESERVED, EXPIRED, DAMAGED)


class SaleStatus:
    DRAFT = "draft"
    VALIDATED = "validated"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PurchaseStatus:
    DRAFT = "draft"
    VALIDATED = "validated"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class ReplenishmentStatus:
    DRAFT = "draft"
    SENT = "sent"
    IN_PROGRESS = "in_progress"
    PROCESSED = "processed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ReplenishmentPriority:
    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"

    ALL = (NORMAL, URGENT, CRITICAL)


class InvoiceStatus:
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    CANCELLED = "cancelled"

    OPEN = (UNPAID, PARTIALLY_PAID)


class InvoiceDirection:
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


class PaymentMethod:
    CASH = "cash"
    CHEQUE = "cheque"
    TRANSFER = "transfer"
    MOBILE_MONEY = "mobile_money"
    CARD = "card"

    ALL = (CASH, CHEQUE, TRANSFER, MOBILE_MONEY, CARD)


class AlertType:
    OUT_OF_STOCK = "Rupture"
    LOW_STOCK = "StockFaible"
    EXPIRY = "Peremption"


class MovementType:
    ENTRY = "entry"
    RECEPTION = "reception"
    SALE = "sale"
    RELEASE = "release"
    ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class Product:
    id: int
    code: str
    name: str
    purchase_price: float
    sale_price: float
    reorder_threshold: int
    perishable: bool = False
    active: int = 1


@dataclass(frozen=True)
class Warehouse:
    id: int
    name: str
    capacity: Optional[int]
    location: Optional[str] = None


@dataclass(frozen=True)
class Lot:
    id: int
    product_id: int
    warehouse_id: int
    quantity: int
    location: str
    entry_date: datetime
    batch_no: str
    status: str
    expiry_date: Optional[date] = None

    def is_expired_on(self, today: date) -> bool:
        return self.expiry_date is not None and self.expiry_date <= today


@dataclass(frozen=True)
class StockMovement:
    id: int
    datetime: datetime
    lot_id: int
    product_id: int
    warehouse_id: int
    movement_type: str
    qty_delta: int
    qty_after: int
    reference_type: Optional[str]
    reference_id: Optional[int]
    notes: Optional[str]


@dataclass(frozen=True)
class Allocation:
    lot_id: int
    quantity: int


@dataclass(frozen=True)
class SaleLine:
    id: int
    product_id: int
    qty: int
    unit_price: float

    @property
    def subtotal(self) -> float:
        return self.qty * self.unit_price


@dataclass(frozen=True)
class Sale:
    id: int
    number: str
    customer_id: int
    seller_id: Optional[int]
    sale_date: date
    discount: float
    total_pretax: float
    total_with_tax: float
    status: str
    notes: Optional[str]
    lines: tuple[SaleLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PurchaseOrderLine:
    id: int
    product_id: int
    qty: int
    unit_cost: float
    expiry_date: Optional[date] = None

    @property
    def subtotal(self) -> float:
        return self.qty * self.unit_cost


@dataclass(frozen=True)
class PurchaseOrder:
    id: int
    number: str
    supplier_id: int
    order_date: date
    expected_date: Optional[date]
    total: float
    status: str
    notes: Optional[str]
    lines: tuple[PurchaseOrderLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ReplenishmentLine:
    id: int
    product_id: int
    qty_requested: int
    current_stock: Optional[int]
    reorder_threshold: Optional[int]
    justification: Optional[str] = None


@dataclass(frozen=True)
class ReplenishmentRequest:
    """Internal request from stock management asking purchasing to restock products."""

    id: int
    number: str
    requester_id: int
    assignee_id: Optional[int]
    request_date: date
    reason: Optional[str]
    priority: str
    status: str
    processed_at: Optional[datetime] = None
    processing_comment: Optional[str] = None
    lines: tuple[ReplenishmentLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class InvoiceRef:
    direction: str
    id: int


@dataclass(frozen=True)
class Invoice:
    id: int
    direction: str
    number: str
    source_id: int
    party_id: int
    issue_date: date
    due_date: date
    total: float
    status: str

    @property
    def ref(self) -> InvoiceRef:
        return InvoiceRef(self.direction, self.id)


@dataclass(frozen=True)
class Payment:
    id: int
    invoice: InvoiceRef
    amount: float
    payment_date: date
    method: str
    reference: Optional[str]


@dataclass(frozen=True)
class Alert:
    id: int
    type: str
    product_id: int
    message: str
    read: bool
    created_at: datetime
