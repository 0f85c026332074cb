from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db.session import get_db
from ..deps.auth import require_admin
from ..schemas.inventory import LowStockProductOut
from ..schemas.report import InventoryValueReport, LowStockReport, StockMovementReport
from ..services.ledger import parse_date_bound
from ..services.reporting import inventory_value_report, stock_movement_report
from ..services.stock_queries import list_low_stock

router = APIRouter(prefix="/api/v1/reports", tags=["reports"], dependencies=[Depends(require_admin)])


@router.get("/inventory-value", response_model=InventoryValueReport)
def api_inventory_value(db: Session = Depends(get_db)):
    return InventoryValueReport.model_validate(inventory_value_report(db))


@router.get("/stock-movement", response_model=StockMovementReport)
def api_stock_movement(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    db: Session = Depends(get_db),
):
    start = parse_date_bound(start_date)
    end = parse_date_bound(end_date, end=True)
    return StockMovementReport.model_validate(stock_movement_report(db, start=start, end=end))


@router.get("/low-stock", response_model=LowStockReport)
def api_low_stock_report(db: Session = Depends(get_db)):
    items = list_low_stock(db)
    return LowStockReport(low_stock_products=[LowStockProductOut.from_item(item) for item in items])
