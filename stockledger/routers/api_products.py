from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.stock import INTEGER_MAX
from ..crud.products import (
    archive_product,
    create_product,
    get_product,
    list_categories,
    list_products,
    update_product,
)
from ..db.session import get_db
from ..db.unit_of_work import UnitOfWork
from ..deps.auth import require_actor, require_admin
from ..models.user import User
from ..schemas.product import ProductCreate, ProductOut, ProductUpdate

router = APIRouter(prefix="/api/v1/products", tags=["products"], dependencies=[Depends(require_actor)])


def _get_or_404(db: Session, product_id: int):
    product = get_product(db, product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.get("", response_model=list[ProductOut])
def api_list_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    low_stock: bool = Query(default=False, alias="lowStock"),
    sort_by: Optional[str] = Query(default=None, alias="sortBy"),
    sort_order: str = Query(default="asc", alias="sortOrder"),
    db: Session = Depends(get_db),
):
    products = list_products(
        db,
        search=search,
        category=category,
        low_stock=low_stock,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return [ProductOut.model_validate(product) for product in products]


@router.get("/categories", response_model=list[str])
def api_list_categories(db: Session = Depends(get_db)):
    return list_categories(db)


@router.get("/{product_id}", response_model=ProductOut)
def api_get_product(product_id: int = Path(ge=1, le=INTEGER_MAX), db: Session = Depends(get_db)):
    return ProductOut.model_validate(_get_or_404(db, product_id))


@router.post("", response_model=ProductOut, status_code=201)
def api_create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        with UnitOfWork(
            db,
            timeout=settings.STOCK_TXN_TIMEOUT_SECONDS,
            lock_wait=settings.STOCK_LOCK_WAIT_SECONDS,
        ) as uow:
            product = create_product(uow, payload.model_dump(exclude_unset=True), admin)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return ProductOut.model_validate(product)


@router.put("/{product_id}", response_model=ProductOut)
def api_update_product(
    product_id: Annotated[int, Path(ge=1, le=INTEGER_MAX)],
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    product = _get_or_404(db, product_id)
    try:
        updated = update_product(db, product, payload.model_dump(exclude_none=True))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return ProductOut.model_validate(updated)


@router.delete("/{product_id}")
def api_delete_product(
    product_id: int = Path(ge=1, le=INTEGER_MAX),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    product = _get_or_404(db, product_id)
    archive_product(db, product)
    return {"status": "archived", "id": product_id}
