from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security.utils import get_authorization_scheme_param
from sqlalchemy.orm import Session

from ..core.logging import actor_ctx_var, log_extra
from ..core.security import decode_token
from ..crud.users import get_user
from ..db.session import get_db
from ..models.user import User

logger = logging.getLogger(__name__)


def _unauthorized(detail: str = "Unauthorized") -> None:
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _record_actor(request: Request, user: User) -> None:
    # Sync dependencies run in a worker thread, so the context var only covers
    # log lines written from here; the request id ties this line to the rest.
    actor = f"user:{user.id}"
    actor_ctx_var.set(actor)
    logger.info(
        "request.actor_resolved",
        extra=log_extra(method=request.method, path=request.url.path, role=user.role),
    )


def require_actor(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to the user who is moving stock."""

    if not authorization:
        _unauthorized("Authorization required")
    scheme, credentials = get_authorization_scheme_param(authorization)
    if scheme.lower() != "bearer" or not credentials:
        _unauthorized("Bearer token required")
    try:
        payload = decode_token(credentials)
        user_id = payload.user_id
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    user = get_user(db, user_id)
    if user is None:
        _unauthorized("Unknown user")
    _record_actor(request, user)
    return user


def require_admin(user: User = Depends(require_actor)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
