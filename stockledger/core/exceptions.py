"""Domain errors raised by the stock ledger and the catalogue.

Each error knows the HTTP status and machine-readable ``code`` it maps to, plus
any structured ``fields`` a client needs to render a precise message. The HTTP
layer turns them into :class:`~stockledger.core.errors.ErrorEnvelope` responses;
services never build responses themselves.
"""

from __future__ import annotations

from typing import Any


class StockError(Exception):
    status_code: int = 400
    code: str = "stock_error"
    default_message: str = "Stock operation failed"

    def __init__(self, message: str | None = None, **fields: Any) -> None:
        self.message = message or self.default_message
        self.fields = fields
        super().__init__(self.message)


class InvalidActionError(StockError):
    code = "invalid_action"
    default_message = "Invalid action. Must be Add, Remove, or Update"


class InvalidQuantityError(StockError):
    code = "invalid_quantity"
    default_message = "Quantity must be greater than 0"


class ProductNotFoundError(StockError):
    status_code = 404
    code = "product_not_found"
    default_message = "Product not found"


class InsufficientStockError(StockError):
    code = "insufficient_stock"
    default_message = "Insufficient stock"

    def __init__(self, current_stock: int, requested_quantity: int) -> None:
        super().__init__(currentStock=current_stock, requestedQuantity=requested_quantity)
        self.current_stock = current_stock
        self.requested_quantity = requested_quantity


class UnknownActorError(StockError):
    code = "unknown_actor"
    default_message = "Actor not found"


class InvalidFilterError(StockError):
    code = "invalid_filter"
    default_message = "Invalid filter"


class DuplicateProductError(StockError):
    status_code = 409
    code = "duplicate_product"
    default_message = "Product with this SKU already exists"


class UserNotFoundError(StockError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found"


class DuplicateUserError(StockError):
    status_code = 409
    code = "duplicate_user"
    default_message = "User with this username already exists"


class StorageUnavailableError(StockError):
    status_code = 503
    code = "storage_unavailable"
    default_message = "Storage is unavailable"


class TransactionTimeoutError(StockError):
    status_code = 503
    code = "transaction_timeout"
    default_message = "Stock transaction timed out"
    retry_after = 1


__all__ = [
    "StockError",
    "InvalidActionError",
    "InvalidQuantityError",
    "ProductNotFoundError",
    "InsufficientStockError",
    "UnknownActorError",
    "InvalidFilterError",
    "DuplicateProductError",
    "UserNotFoundError",
    "DuplicateUserError",
    "StorageUnavailableError",
    "TransactionTimeoutError",
]
