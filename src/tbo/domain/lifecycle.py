from __future__ import annotations

from tbo.domain.errors import InvalidTransitionError
from tbo.domain.models import PurchaseStatus, ReplenishmentStatus, SaleStatus

SALE_TRANSITIONS: dict[str, set[str]] = {
    SaleStatus.DRAFT: {SaleStatus.VALIDATED, SaleStatus.CANCELLED},
    SaleStatus.VALIDATED: {SaleStatus.DELIVERED, SaleStatus.CANCELLED},
    SaleStatus.DELIVERED: set(),
    SaleStatus.CANCELLED: set(),
}

PURCHASE_TRANSITIONS: dict[str, set[str]] = {
    PurchaseStatus.DRAFT: {PurchaseStatus.VALIDATED, PurchaseStatus.CANCELLED},
    PurchaseStatus.VALIDATED: {PurchaseStatus.RECEIVED, PurchaseStatus.CANCELLED},
    PurchaseStatus.RECEIVED: set(),
    PurchaseStatus.CANCELLED: set(),
}

# A sent request can be processed or rejected directly, without being taken in charge first.
REPLENISHMENT_TRANSITIONS: dict[str, set[str]] = {
    ReplenishmentStatus.DRAFT: {ReplenishmentStatus.SENT, ReplenishmentStatus.CANCELLED},
    ReplenishmentStatus.SENT: {
        ReplenishmentStatus.IN_PROGRESS,
        ReplenishmentStatus.PROCESSED,
        ReplenishmentStatus.REJECTED,
        ReplenishmentStatus.CANCELLED,
    },
    ReplenishmentStatus.IN_PROGRESS: {
        ReplenishmentStatus.PROCESSED,
        ReplenishmentStatus.REJECTED,
        ReplenishmentStatus.CANCELLED,
    },
    ReplenishmentStatus.PROCESSED: set(),
    ReplenishmentStatus.REJECTED: set(),
    ReplenishmentStatus.CANCELLED: set(),
}


def can_transition(table: dict[str, set[str]], current: str, target: str) -> bool:
    return target in table.get(current, set())


def require_sale_transition(current: str, target: str) -> None:
    if not can_transition(SALE_TRANSITIONS, current, target):
        raise InvalidTransitionError("Sale", current, target)


def require_purchase_transition(current: str, target: str) -> None:
    if not can_transition(PURCHASE_TRANSITIONS, current, target):
        raise InvalidTransitionError("PurchaseOrder", current, target)


def require_replenishment_transition(current: str, target: str) -> None:
    if not can_transition(REPLENISHMENT_TRANSITIONS, current, target):
        raise InvalidTransitionError("ReplenishmentRequest", current, target)
