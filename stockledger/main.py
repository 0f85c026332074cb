"""Application factory and top-level wiring for the stock ledger service.

This module brings together configuration, logging, database setup, API
routers and error handling. Reading it top to bottom shows *what* pieces
exist, *when* they are initialised, and *how* a request travels through them.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import settings
from .core.errors import (
    http_exception_handler,
    stock_error_handler,
    storage_error_handler,
    validation_exception_handler,
)
from .core.exceptions import StockError
from .core.logging import configure_logging, log_extra
from .crud.users import ensure_default_admin
from .db.session import SessionLocal, init_db
from .middlewares import RequestIdMiddleware
from .routers import api_auth, api_inventory, api_products, api_reports, api_users

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and the bootstrap admin before the first request.

    *When:* Once per process, on startup.
    *Why:* Every ledger entry needs an existing actor, so a brand-new
    database would otherwise be unusable until someone inserts a user by hand.
    """

    init_db()
    db = SessionLocal()
    try:
        ensure_default_admin(db, settings.BOOTSTRAP_ADMIN_USERNAME)
    finally:
        db.close()
    logger.info("app.started", extra=log_extra(env=settings.APP_ENV))
    yield
    logger.info("app.stopped")


def create_app() -> FastAPI:
    configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

    # ---------- Middleware ----------
    # Starlette runs middleware in reverse order of registration, so the
    # request id is assigned before CORS and the routers see the request.
    if settings.ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(RequestIdMiddleware)

    # ---------- Exception handling ----------
    # Ledger errors, storage failures, HTTP errors and schema failures all
    # leave as the same ``{code, message, ...}`` envelope.
    app.add_exception_handler(StockError, stock_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # ---------- Routers ----------
    app.include_router(api_auth.router)
    app.include_router(api_products.router)
    app.include_router(api_inventory.router)
    app.include_router(api_reports.router)
    app.include_router(api_users.router)

    @app.get("/health", tags=["meta"])
    def health() -> dict[str, bool]:
        return {"ok": True}

    Instrumentator().instrument(app).expose(app, include_in_schema=False)
    return app


app = create_app()

__all__ = ["app", "create_app"]
