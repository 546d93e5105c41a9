from __future__ import annotations


class AppError(Exception):
    """Base app error.

    ``details`` carries the quantities relevant to the failure so callers can
    report them (available vs requested, amount vs remaining, ...).
    """

    code = "app_error"

    def __init__(self, message: str, **details: object):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.details}


class ValidationError(AppError):
    code = "validation_error"


class NotFoundError(AppError):
    code = "not_found"


class InsufficientStockError(AppError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            f"Not enough stock for product {product_id}. Available: {available}, requested: {requested}",
            product_id=int(product_id),
            available=int(available),
            requested=int(requested),
        )


class CapacityExceededError(AppError):
    code = "capacity_exceeded"

    def __init__(self, warehouse_id: int, free_capacity: int, requested: int):
        super().__init__(
            f"Warehouse {warehouse_id} capacity exceeded. Free: {free_capacity}, requested: {requested}",
            warehouse_id=int(warehouse_id),
            free_capacity=int(free_capacity),
            requested=int(requested),
        )


class NegativeQuantityError(AppError):
    code = "negative_quantity"

    def __init__(self, lot_id: int, current: int, delta: int):
        super().__init__(
            f"Quantity cannot go negative for lot {lot_id}. Current: {current}, adjustment: {delta}",
            lot_id=int(lot_id),
            current=int(current),
            delta=int(delta),
        )


class PaymentExceedsBalanceError(AppError):
    code = "payment_exceeds_balance"

    def __init__(self, amount: float, remaining: float):
        super().__init__(
            f"Payment {amount:.2f} exceeds remaining balance {remaining:.2f}",
            amount=float(amount),
            remaining=float(remaining),
        )


class InvalidTransitionError(AppError):
    code = "invalid_transition"

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"{entity} cannot transition from '{current}' to '{target}'",
            entity=entity,
            current=current,
            target=target,
        )
