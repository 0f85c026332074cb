"""Stock movement rules with plain-language explanations.

Everything here is pure: no sessions, no clocks. The ledger service and the
derivation layer both lean on these helpers so the transition table and the
low-stock boundary live in exactly one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Iterable, Protocol

from .exceptions import InsufficientStockError, InvalidActionError, InvalidQuantityError

__all__ = [
    "INTEGER_MAX",
    "StockAction",
    "StockStatus",
    "parse_action",
    "validate_quantity",
    "next_stock",
    "classify_stock",
    "stock_ratio",
    "LedgerReplay",
    "replay_ledger",
]


# Largest value an INTEGER column holds on every supported backend. Stock
# levels, quantities and ids beyond it are rejected before reaching the driver.
INTEGER_MAX = 2**31 - 1


class StockAction(str, Enum):
    ADD = "Add"
    REMOVE = "Remove"
    UPDATE = "Update"


class StockStatus(str, Enum):
    IN_STOCK = "InStock"
    LOW_STOCK = "LowStock"
    OUT_OF_STOCK = "OutOfStock"


def parse_action(value: object) -> StockAction:
    """Map an incoming action name onto :class:`StockAction`.

    Matching is exact (``"Add"``, not ``"add"``) because the action set is a
    closed enum shared with stored ledger rows.
    """

    if isinstance(value, StockAction):
        return value
    try:
        return StockAction(value)
    except ValueError:
        raise InvalidActionError() from None


def validate_quantity(action: StockAction, quantity: object) -> int:
    """Return ``quantity`` if it is acceptable for ``action``.

    Add and Remove need a positive delta. Update sets an absolute level, so
    zero is allowed there: zeroing a recalled batch is a real operation.
    """

    # bool is an int subclass; True must not sneak through as 1.
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError("Quantity must be an integer")
    if quantity > INTEGER_MAX:
        raise InvalidQuantityError(f"Quantity must not exceed {INTEGER_MAX}")
    if action is StockAction.UPDATE:
        if quantity < 0:
            raise InvalidQuantityError("Quantity must not be negative")
        return quantity
    if quantity <= 0:
        raise InvalidQuantityError()
    return quantity


def next_stock(previous: int, action: StockAction, quantity: int) -> int:
    """Apply the transition table to ``previous``."""

    if action is StockAction.ADD:
        if previous + quantity > INTEGER_MAX:
            raise InvalidQuantityError(f"Stock would exceed {INTEGER_MAX}")
        return previous + quantity
    if action is StockAction.REMOVE:
        if previous < quantity:
            raise InsufficientStockError(current_stock=previous, requested_quantity=quantity)
        return previous - quantity
    if action is StockAction.UPDATE:
        return quantity
    raise InvalidActionError()


def classify_stock(stock: int, threshold: int) -> StockStatus:
    if stock <= 0:
        return StockStatus.OUT_OF_STOCK
    if stock <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def stock_ratio(stock: int, threshold: int) -> Fraction:
    """Exact ``stock / threshold``; thresholds are always >= 1."""

    return Fraction(stock, threshold)


class _LedgerRow(Protocol):
    id: int
    action: StockAction
    quantity: int
    previous_stock: int
    new_stock: int


@dataclass(frozen=True)
class LedgerReplay:
    entry_count: int
    final_stock: int | None
    broken_entry_id: int | None = None

    @property
    def intact(self) -> bool:
        return self.broken_entry_id is None


def replay_ledger(entries: Iterable[_LedgerRow]) -> LedgerReplay:
    """Fold ledger rows (oldest first) through the transition table.

    The fold starts at the first row's ``previous_stock``. A row breaks the
    chain when its ``previous_stock`` differs from the running total or when
    its ``new_stock`` is not what the transition table yields.
    """

    running: int | None = None
    count = 0
    for entry in entries:
        count += 1
        if running is None:
            running = entry.previous_stock
        if entry.previous_stock != running:
            return LedgerReplay(entry_count=count, final_stock=running, broken_entry_id=entry.id)
        try:
            expected = next_stock(running, parse_action(entry.action), entry.quantity)
        except (InsufficientStockError, InvalidActionError):
            return LedgerReplay(entry_count=count, final_stock=running, broken_entry_id=entry.id)
        if expected != entry.new_stock:
            return LedgerReplay(entry_count=count, final_stock=running, broken_entry_id=entry.id)
        running = expected
    return LedgerReplay(entry_count=count, final_stock=running)
