from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.logging import log_extra
from ..core.security import TokenError, issue_token_pair, refresh_access_token
from ..crud.users import get_user_by_username
from ..db.session import get_db
from ..schemas.auth import RefreshRequest, TokenRequest, TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _api_key_matches(provided: str) -> bool:
    configured = (settings.API_KEY or "").strip()
    if not configured:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="API key authentication is disabled")
    return hmac.compare_digest(provided.strip(), configured)


@router.post("/token", response_model=TokenResponse, summary="Exchange the API key for a user's JWTs")
def api_issue_tokens(payload: TokenRequest, db: Session = Depends(get_db)):
    if not _api_key_matches(payload.api_key):
        logger.warning("auth.api_key_rejected", extra=log_extra(username=payload.username))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
    user = get_user_by_username(db, payload.username)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    logger.info("auth.token_issued", extra=log_extra(user_id=user.id))
    return TokenResponse.model_validate(issue_token_pair(user.id, role=user.role).model_dump())


@router.post("/refresh", response_model=TokenResponse, summary="Trade a refresh token for a new pair")
def api_refresh_tokens(payload: RefreshRequest):
    try:
        pair = refresh_access_token(payload.refresh_token)
    except TokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    return TokenResponse.model_validate(pair.model_dump())
