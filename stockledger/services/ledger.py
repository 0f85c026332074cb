"""Stock ledger engine: the only code path that changes ``Product.stock``."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timezone

from sqlalchemy import asc, desc, func, select
from sqlalchemy.orm import Session

from ..core.exceptions import (
    InsufficientStockError,
    InvalidFilterError,
    ProductNotFoundError,
    UnknownActorError,
)
from ..core.logging import log_extra
from ..core.stock import StockAction, next_stock, parse_action, replay_ledger, validate_quantity
from ..db.session import storage_errors
from ..db.unit_of_work import UnitOfWork
from ..models.inventory_log import InventoryLog
from ..models.product import Product
from ..models.user import User

logger = logging.getLogger(__name__)

INITIAL_STOCK_NOTE = "Initial stock"


def _clean_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    cleaned = notes.strip()
    return cleaned or None


def apply_movement(
    uow: UnitOfWork,
    *,
    product_id: int,
    action: object,
    quantity: object,
    actor_id: int,
    notes: str | None = None,
) -> InventoryLog:
    """Apply one stock movement and append its ledger entry atomically.

    Action and quantity are validated before the transaction touches the
    database. The product row is locked for the rest of the transaction, so
    two movements on the same product never read the same ``previous_stock``.
    On success the unit of work is committed and the new entry is returned
    with its product and actor loaded; on any failure nothing is written.
    """

    stock_action = parse_action(action)
    amount = validate_quantity(stock_action, quantity)

    db = uow.session
    product = uow.lock_product(product_id)
    if product is None:
        raise ProductNotFoundError()
    actor = db.get(User, actor_id)
    if actor is None or actor.is_archived:
        raise UnknownActorError()

    previous = product.stock
    try:
        new = next_stock(previous, stock_action, amount)
    except InsufficientStockError:
        logger.warning(
            "stock.movement.rejected",
            extra=log_extra(
                product_id=product.id,
                action=stock_action.value,
                current_stock=previous,
                requested_quantity=amount,
                actor_id=actor.id,
            ),
        )
        raise

    product.stock = new
    entry = InventoryLog(
        product=product,
        user=actor,
        action=stock_action,
        quantity=amount,
        previous_stock=previous,
        new_stock=new,
        notes=_clean_notes(notes),
    )
    db.add(entry)
    db.flush()
    log_id = entry.id
    uow.commit()

    logger.info(
        "stock.movement.applied",
        extra=log_extra(
            log_id=log_id,
            product_id=product_id,
            action=stock_action.value,
            quantity=amount,
            previous_stock=previous,
            new_stock=new,
            actor_id=actor_id,
        ),
    )
    return entry


def record_initial_stock(uow: UnitOfWork, product: Product, actor: User) -> InventoryLog | None:
    """Append the synthetic ``Add`` entry for a product created with stock.

    Runs inside the caller's unit of work; the caller commits.
    """

    if not product.stock:
        return None
    entry = InventoryLog(
        product=product,
        user=actor,
        action=StockAction.ADD,
        quantity=product.stock,
        previous_stock=0,
        new_stock=product.stock,
        notes=INITIAL_STOCK_NOTE,
    )
    uow.session.add(entry)
    return entry


# ---------- Movement listing ----------


def parse_date_bound(value: str | None, *, end: bool = False) -> datetime | None:
    """Turn a query-string date into a naive UTC bound.

    A bare ``YYYY-MM-DD`` end bound covers the whole day.
    """

    if value is None:
        return None
    raw = value.strip()
    if not raw:
        return None
    try:
        if len(raw) == 10:
            day = date.fromisoformat(raw)
            return datetime.combine(day, time.max if end else time.min)
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise InvalidFilterError(f"Invalid date: {value}") from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class MovementFilter:
    product_id: int | None = None
    actor_id: int | None = None
    action: StockAction | None = None
    start: datetime | None = None
    end: datetime | None = None

    @classmethod
    def from_query(
        cls,
        *,
        product_id: int | None = None,
        actor_id: int | None = None,
        action: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> "MovementFilter":
        start = parse_date_bound(start_date)
        end = parse_date_bound(end_date, end=True)
        if start and end and start > end:
            raise InvalidFilterError("startDate must not be after endDate")
        return cls(
            product_id=product_id,
            actor_id=actor_id,
            action=parse_action(action) if action else None,
            start=start,
            end=end,
        )

    def predicates(self) -> list:
        conditions = []
        if self.product_id is not None:
            conditions.append(InventoryLog.product_id == self.product_id)
        if self.actor_id is not None:
            conditions.append(InventoryLog.user_id == self.actor_id)
        if self.action is not None:
            conditions.append(InventoryLog.action == self.action)
        if self.start is not None:
            conditions.append(InventoryLog.created_at >= self.start)
        if self.end is not None:
            conditions.append(InventoryLog.created_at <= self.end)
        return conditions


@dataclass
class MovementPage:
    items: list[InventoryLog]
    page: int
    pages: int
    total: int


def list_movements(
    db: Session,
    filters: MovementFilter | None = None,
    page: int = 1,
    page_size: int = 50,
) -> MovementPage:
    """Return one page of ledger entries, newest first."""

    if page < 1:
        raise InvalidFilterError("page must be >= 1")
    if page_size < 1:
        raise InvalidFilterError("limit must be >= 1")
    conditions = (filters or MovementFilter()).predicates()

    with storage_errors("list_movements"):
        total = db.execute(select(func.count(InventoryLog.id)).where(*conditions)).scalar_one()
        stmt = (
            select(InventoryLog)
            .where(*conditions)
            .order_by(desc(InventoryLog.created_at), desc(InventoryLog.id))
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        items = db.execute(stmt).scalars().all()

    return MovementPage(items=list(items), page=page, pages=math.ceil(total / page_size), total=total)


def recent_movements(db: Session, limit: int = 5) -> list[InventoryLog]:
    if limit <= 0:
        return []
    stmt = select(InventoryLog).order_by(desc(InventoryLog.created_at), desc(InventoryLog.id)).limit(limit)
    with storage_errors("recent_movements"):
        return list(db.execute(stmt).scalars().all())


# ---------- Ledger audit ----------


@dataclass(frozen=True)
class LedgerAudit:
    product_id: int
    current_stock: int
    replayed_stock: int | None
    entry_count: int
    consistent: bool
    broken_entry_id: int | None = None


def audit_product_ledger(db: Session, product_id: int) -> LedgerAudit:
    """Replay a product's ledger and compare the result with its stock."""

    with storage_errors("audit_product_ledger"):
        product = db.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError()
        stmt = (
            select(InventoryLog)
            .where(InventoryLog.product_id == product_id)
            .order_by(asc(InventoryLog.created_at), asc(InventoryLog.id))
        )
        entries = db.execute(stmt).scalars().all()

    replay = replay_ledger(entries)
    if replay.entry_count == 0:
        consistent = product.stock == 0
    else:
        consistent = replay.intact and replay.final_stock == product.stock
    return LedgerAudit(
        product_id=product.id,
        current_stock=product.stock,
        replayed_stock=replay.final_stock,
        entry_count=replay.entry_count,
        consistent=consistent,
        broken_entry_id=replay.broken_entry_id,
    )
