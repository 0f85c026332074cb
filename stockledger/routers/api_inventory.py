from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.stock import INTEGER_MAX
from ..db.session import get_db
from ..db.unit_of_work import UnitOfWork
from ..deps.auth import require_actor
from ..models.user import User
from ..schemas.inventory import (
    InventoryLogOut,
    InventoryLogPage,
    InventoryStatsOut,
    LedgerAuditOut,
    LowStockProductOut,
    StockUpdateRequest,
)
from ..services.ledger import MovementFilter, apply_movement, audit_product_ledger, list_movements
from ..services.stock_queries import compute_stats, list_low_stock

router = APIRouter(prefix="/api/v1/inventory", tags=["inventory"])


@router.post("/update", response_model=InventoryLogOut)
def api_update_stock(
    payload: StockUpdateRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(require_actor),
):
    with UnitOfWork(
        db,
        timeout=settings.STOCK_TXN_TIMEOUT_SECONDS,
        lock_wait=settings.STOCK_LOCK_WAIT_SECONDS,
    ) as uow:
        entry = apply_movement(
            uow,
            product_id=payload.product_id,
            action=payload.action,
            quantity=payload.quantity,
            actor_id=actor.id,
            notes=payload.notes,
        )
    return InventoryLogOut.model_validate(entry)


@router.get("/logs", response_model=InventoryLogPage)
def api_inventory_logs(
    product_id: Optional[int] = Query(default=None, alias="productId", ge=1, le=INTEGER_MAX),
    user_id: Optional[int] = Query(default=None, alias="userId", ge=1, le=INTEGER_MAX),
    action: Optional[str] = None,
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    page: int = Query(default=1, ge=1, le=INTEGER_MAX),
    limit: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    actor: User = Depends(require_actor),
):
    filters = MovementFilter.from_query(
        product_id=product_id,
        actor_id=user_id,
        action=action,
        start_date=start_date,
        end_date=end_date,
    )
    page_size = min(limit or settings.LOG_PAGE_SIZE_DEFAULT, settings.LOG_PAGE_SIZE_MAX)
    result = list_movements(db, filters, page=page, page_size=page_size)
    return InventoryLogPage(
        logs=[InventoryLogOut.model_validate(entry) for entry in result.items],
        page=result.page,
        pages=result.pages,
        total=result.total,
    )


@router.get("/low-stock", response_model=list[LowStockProductOut])
def api_low_stock(db: Session = Depends(get_db), actor: User = Depends(require_actor)):
    return [LowStockProductOut.from_item(item) for item in list_low_stock(db)]


@router.get("/stats", response_model=InventoryStatsOut)
def api_inventory_stats(db: Session = Depends(get_db), actor: User = Depends(require_actor)):
    stats = compute_stats(db, recent_limit=settings.RECENT_ACTIVITY_LIMIT)
    return InventoryStatsOut(
        total_products=stats.total_products,
        stock_value=stats.stock_value,
        low_stock_count=stats.low_stock_count,
        out_of_stock_count=stats.out_of_stock_count,
        recent_activity=[InventoryLogOut.model_validate(entry) for entry in stats.recent_activity],
    )


@router.get("/products/{product_id}/audit", response_model=LedgerAuditOut)
def api_ledger_audit(
    product_id: int = Path(ge=1, le=INTEGER_MAX),
    db: Session = Depends(get_db),
    actor: User = Depends(require_actor),
):
    audit = audit_product_ledger(db, product_id)
    return LedgerAuditOut.model_validate(audit)
