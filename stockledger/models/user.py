from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String

from ..db.session import Base
from .product import utcnow

ROLE_ADMIN = "admin"
ROLE_STAFF = "staff"


class User(Base):
    """An actor that can move stock. Credentials live with the auth provider."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True)
    role = Column(String(16), nullable=False, default=ROLE_STAFF)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    # Ledger entries point at users with ON DELETE RESTRICT, so removal is a
    # tombstone: the row stays for attribution, the account stops working.
    archived_at = Column(DateTime, nullable=True)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None
