# stockledger/crud/products.py
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import asc, desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import DuplicateProductError, InvalidFilterError
from ..db.session import commit_changes, storage_errors
from ..db.unit_of_work import UnitOfWork
from ..models.product import Product, utcnow
from ..models.user import User
from ..services.ledger import record_initial_stock

# Everything an administrator may edit. ``stock`` is absent: it
# only moves through the ledger.
UPDATABLE_FIELDS = (
    "sku",
    "name",
    "barcode",
    "category",
    "threshold",
    "expiry_date",
    "description",
    "price",
    "image_url",
)

SORTABLE_FIELDS = {
    "name": Product.name,
    "sku": Product.sku,
    "category": Product.category,
    "stock": Product.stock,
    "threshold": Product.threshold,
    "price": Product.price,
    "created_at": Product.created_at,
    "createdAt": Product.created_at,
}


def _clean_text(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _check_numbers(data: dict) -> None:
    threshold = data.get("threshold")
    if threshold is not None and threshold < 1:
        raise ValueError("threshold must be at least 1")
    price = data.get("price")
    if price is not None and Decimal(price) < 0:
        raise ValueError("price must not be negative")


def _ensure_unique(db: Session, *, sku: str | None, barcode: str | None, exclude_id: int | None = None) -> None:
    # Archived products keep their SKU and barcode reserved.
    if sku:
        stmt = select(Product.id).where(Product.sku == sku)
        if exclude_id is not None:
            stmt = stmt.where(Product.id != exclude_id)
        if db.execute(stmt).first():
            raise DuplicateProductError()
    if barcode:
        stmt = select(Product.id).where(Product.barcode == barcode)
        if exclude_id is not None:
            stmt = stmt.where(Product.id != exclude_id)
        if db.execute(stmt).first():
            raise DuplicateProductError("Product with this barcode already exists")


def create_product(uow: UnitOfWork, payload: dict, actor: User) -> Product:
    """Create a product and, when it starts with stock, its opening ledger entry.

    Both rows are written in the caller's unit of work and committed together.
    """

    db = uow.session
    data = {key: _clean_text(value) for key, value in payload.items()}
    for required in ("sku", "name", "category"):
        if not data.get(required):
            raise ValueError(f"{required} is required")
    stock = data.pop("stock", None) or 0
    if stock < 0:
        raise ValueError("stock must not be negative")
    if data.get("threshold") is None:
        data["threshold"] = settings.DEFAULT_LOW_STOCK_THRESHOLD
    _check_numbers(data)
    _ensure_unique(db, sku=data["sku"], barcode=data.get("barcode"))

    product = Product(stock=stock, **{key: data.get(key) for key in UPDATABLE_FIELDS if key in data})
    db.add(product)
    try:
        db.flush()
    except IntegrityError as exc:
        raise DuplicateProductError() from exc
    record_initial_stock(uow, product, actor)
    uow.commit()
    db.refresh(product)
    return product


def get_product(db: Session, product_id: int) -> Product | None:
    """Fetch an active product; archived ones are treated as gone."""

    with storage_errors("get_product"):
        product = db.get(Product, product_id)
    if product is None or product.is_archived:
        return None
    return product


def list_products(
    db: Session,
    *,
    search: str | None = None,
    category: str | None = None,
    low_stock: bool = False,
    sort_by: str | None = None,
    sort_order: str = "asc",
) -> list[Product]:
    stmt = select(Product).where(Product.archived_at.is_(None))
    if search and search.strip():
        stmt = stmt.where(Product.name.ilike(f"%{search.strip()}%"))
    if category:
        stmt = stmt.where(Product.category == category)
    if low_stock:
        stmt = stmt.where(Product.stock <= Product.threshold)
    if sort_by:
        column = SORTABLE_FIELDS.get(sort_by)
        if column is None:
            raise InvalidFilterError(f"Cannot sort by {sort_by}")
        direction = desc if (sort_order or "").lower() == "desc" else asc
        stmt = stmt.order_by(direction(column), Product.id)
    else:
        stmt = stmt.order_by(Product.id)
    with storage_errors("list_products"):
        return list(db.execute(stmt).scalars().all())


def list_categories(db: Session) -> list[str]:
    stmt = (
        select(Product.category)
        .where(Product.archived_at.is_(None))
        .distinct()
        .order_by(Product.category)
    )
    with storage_errors("list_categories"):
        return [row for row in db.execute(stmt).scalars().all()]


def update_product(db: Session, product: Product, payload: dict) -> Product:
    """Update descriptive fields in place.

    Unknown keys, ``stock`` included, are ignored so stale clients cannot move
    stock around the ledger.
    """

    data = {key: _clean_text(value) for key, value in payload.items() if key in UPDATABLE_FIELDS}
    for required in ("sku", "name", "category"):
        if required in data and not data[required]:
            raise ValueError(f"{required} is required")
    if "threshold" in data and data["threshold"] is None:
        raise ValueError("threshold is required")
    _check_numbers(data)
    _ensure_unique(db, sku=data.get("sku"), barcode=data.get("barcode"), exclude_id=product.id)

    for key, value in data.items():
        setattr(product, key, value)
    try:
        commit_changes(db, operation="update_product")
    except IntegrityError as exc:
        raise DuplicateProductError() from exc
    db.refresh(product)
    return product


def archive_product(db: Session, product: Product) -> Product:
    """Tombstone a product; its ledger entries stay untouched."""

    product.archived_at = utcnow()
    commit_changes(db, operation="archive_product")
    db.refresh(product)
    return product
