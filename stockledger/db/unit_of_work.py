"""Explicit transaction scope for stock mutations.

A :class:`UnitOfWork` is handed to every ledger write. It owns the session's
transaction for the duration of the ``with`` block: callers must call
:meth:`UnitOfWork.commit` explicitly, and leaving the block any other way
(exception, early return, forgotten commit) rolls everything back.

Entering ends whatever read transaction the session already had open and
starts a fresh one flagged with ``WRITE_LOCK_OPTION``. Pending changes made
outside a unit of work are not carried into it.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import TransactionTimeoutError
from ..core.logging import log_extra
from .session import WRITE_LOCK_OPTION, translate_storage_error

if TYPE_CHECKING:
    from ..models.product import Product

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(
        self,
        session: Session,
        *,
        timeout: float | None = None,
        lock_wait: float | None = None,
        clock=time.monotonic,
    ) -> None:
        self.session = session
        self.timeout = timeout
        self.lock_wait = lock_wait
        self._clock = clock
        self._started: float | None = None
        self._committed = False

    def __enter__(self) -> "UnitOfWork":
        self._started = self._clock()
        self._committed = False
        # Reads made earlier in the request (the actor lookup) ran in a plain
        # transaction; the ledger write needs one opened with the write lock.
        if self.session.in_transaction():
            self.session.rollback()
        try:
            self.session.connection(execution_options={WRITE_LOCK_OPTION: True})
            bind = self.session.get_bind()
            if bind.dialect.name == "postgresql":
                # Bound how long a statement waits on another transaction's row lock.
                if self.lock_wait is not None:
                    self.session.execute(text(f"SET LOCAL lock_timeout = '{int(self.lock_wait * 1000)}ms'"))
                if self.timeout is not None:
                    self.session.execute(text(f"SET LOCAL statement_timeout = '{int(self.timeout * 1000)}ms'"))
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise translate_storage_error(exc, operation="unit_of_work.begin") from exc
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._committed and exc is None:
            return None
        try:
            self.session.rollback()
        except SQLAlchemyError:
            logger.exception("unit_of_work.rollback_failed")
        if isinstance(exc, SQLAlchemyError):
            raise translate_storage_error(exc, operation="unit_of_work") from exc
        return None

    @property
    def elapsed(self) -> float:
        if self._started is None:
            return 0.0
        return self._clock() - self._started

    def check_deadline(self) -> None:
        if self.timeout is not None and self.elapsed > self.timeout:
            logger.warning(
                "unit_of_work.deadline_exceeded",
                extra=log_extra(elapsed=round(self.elapsed, 3), timeout=self.timeout),
            )
            raise TransactionTimeoutError()

    def lock_product(self, product_id: int) -> "Product | None":
        """Load an active product and hold its row lock until commit/rollback."""

        from ..models.product import Product

        stmt = (
            select(Product)
            .where(Product.id == product_id, Product.archived_at.is_(None))
            .with_for_update()
        )
        return self.session.execute(stmt).scalars().first()

    def commit(self) -> None:
        self.check_deadline()
        self.session.commit()
        self._committed = True
