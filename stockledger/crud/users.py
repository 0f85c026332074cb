from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import DuplicateUserError
from ..core.logging import log_extra
from ..db.session import commit_changes, storage_errors
from ..models.product import utcnow
from ..models.user import ROLE_ADMIN, ROLE_STAFF, User

logger = logging.getLogger(__name__)

ROLES = {ROLE_ADMIN, ROLE_STAFF}

# Fields an administrator may change after creation.
UPDATABLE_FIELDS = ("username", "email", "role")


def get_user(db: Session, user_id: int, *, include_archived: bool = False) -> User | None:
    with storage_errors("get_user"):
        user = db.get(User, user_id)
    if user is None or (user.is_archived and not include_archived):
        return None
    return user


def get_user_by_username(db: Session, username: str) -> User | None:
    stmt = select(User).where(User.username == username.strip(), User.archived_at.is_(None))
    with storage_errors("get_user_by_username"):
        return db.execute(stmt).scalars().first()


def list_users(db: Session, *, role: str | None = None) -> list[User]:
    """Active users, newest first."""

    stmt = select(User).where(User.archived_at.is_(None))
    if role:
        stmt = stmt.where(User.role == role)
    stmt = stmt.order_by(User.created_at.desc(), User.id.desc())
    with storage_errors("list_users"):
        return list(db.execute(stmt).scalars().all())


def _clean(data: dict) -> dict:
    cleaned = {}
    for key, value in data.items():
        if isinstance(value, str):
            value = value.strip() or None
        cleaned[key] = value
    return cleaned


def _check_fields(data: dict) -> None:
    if "username" in data and not data["username"]:
        raise ValueError("username is required")
    if "role" in data and data["role"] not in ROLES:
        raise ValueError(f"role must be one of {sorted(ROLES)}")
    email = data.get("email")
    if email and "@" not in email:
        raise ValueError("email is invalid")


def _ensure_unique(db: Session, username: str | None, exclude_id: int | None = None) -> None:
    if not username:
        return
    # Archived users keep their username reserved; ledger rows still show it.
    stmt = select(User.id).where(User.username == username)
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    with storage_errors("ensure_unique_username"):
        taken = db.execute(stmt).first()
    if taken:
        raise DuplicateUserError()


def create_user(db: Session, payload: dict) -> User:
    """Create and persist an actor from a payload dict."""

    data = _clean({key: value for key, value in payload.items() if key in UPDATABLE_FIELDS})
    data.setdefault("username", None)
    data["role"] = data.get("role") or ROLE_STAFF
    _check_fields(data)
    _ensure_unique(db, data["username"])

    user = User(**data)
    db.add(user)
    try:
        commit_changes(db, operation="create_user")
    except IntegrityError as exc:
        raise DuplicateUserError() from exc
    db.refresh(user)
    return user


def update_user(db: Session, user: User, payload: dict) -> User:
    """Apply username, email and role changes; other keys are ignored."""

    data = _clean({key: value for key, value in payload.items() if key in UPDATABLE_FIELDS})
    _check_fields(data)
    _ensure_unique(db, data.get("username"), exclude_id=user.id)

    for key, value in data.items():
        setattr(user, key, value)
    try:
        commit_changes(db, operation="update_user")
    except IntegrityError as exc:
        raise DuplicateUserError() from exc
    db.refresh(user)
    logger.info("users.updated", extra=log_extra(user_id=user.id, fields=sorted(data)))
    return user


def archive_user(db: Session, user: User) -> User:
    """Tombstone a user; ledger entries keep pointing at the row."""

    user.archived_at = utcnow()
    commit_changes(db, operation="archive_user")
    db.refresh(user)
    logger.info("users.archived", extra=log_extra(user_id=user.id))
    return user


def ensure_default_admin(db: Session, username: str) -> User | None:
    """Create the bootstrap admin on an empty user table."""

    if not username:
        return None
    with storage_errors("ensure_default_admin"):
        existing = db.execute(select(User.id).limit(1)).first()
    if existing:
        return None
    user = create_user(db, {"username": username, "role": ROLE_ADMIN})
    logger.info("users.bootstrap_admin_created", extra=log_extra(username=username, user_id=user.id))
    return user
