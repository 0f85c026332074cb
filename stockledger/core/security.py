"""JWTs that identify the actor behind a stock movement.

Tokens carry the user id as ``sub`` and the user's role; the role is only a
hint for clients, ``deps.auth`` always reloads the user before trusting it.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from .config import settings

ALGORITHM = "HS256"
AUDIENCE = "stockledger-clients"
ISSUER = "stockledger"


class TokenError(ValueError):
    """Raised for any token that must not be honoured."""


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class ActorClaims(BaseModel):
    sub: str
    role: str | None = None
    typ: TokenKind
    iat: datetime
    exp: datetime
    aud: str
    iss: str

    @property
    def user_id(self) -> int:
        if not self.sub.isdigit():
            raise TokenError("Invalid token subject")
        return int(self.sub)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    role: str | None = None


def _lifetime(kind: TokenKind) -> timedelta:
    if kind is TokenKind.ACCESS:
        return timedelta(minutes=settings.JWT_ACCESS_TTL_MIN)
    return timedelta(days=settings.JWT_REFRESH_TTL_DAYS)


def _sign(user_id: int, kind: TokenKind, role: str | None) -> str:
    issued = datetime.now(tz=timezone.utc)
    claims = {
        "sub": str(user_id),
        "typ": kind.value,
        "iat": int(issued.timestamp()),
        "exp": int((issued + _lifetime(kind)).timestamp()),
        "aud": AUDIENCE,
        "iss": ISSUER,
    }
    if role:
        claims["role"] = role
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=ALGORITHM)


def issue_token_pair(user_id: int, role: str | None = None) -> TokenPair:
    return TokenPair(
        access_token=_sign(user_id, TokenKind.ACCESS, role),
        refresh_token=_sign(user_id, TokenKind.REFRESH, role),
        expires_in=int(_lifetime(TokenKind.ACCESS).total_seconds()),
        role=role,
    )


def decode_token(token: str, *, expected: TokenKind = TokenKind.ACCESS) -> ActorClaims:
    """Verify signature, audience, issuer, expiry and token kind."""

    try:
        raw = jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM], audience=AUDIENCE, issuer=ISSUER)
        claims = ActorClaims.model_validate(raw)
    except (JWTError, ValidationError) as exc:
        raise TokenError("Invalid token") from exc
    if claims.typ is not expected:
        raise TokenError(f"Wrong token type, expected {expected.value}")
    return claims


def refresh_access_token(refresh_token: str) -> TokenPair:
    claims = decode_token(refresh_token, expected=TokenKind.REFRESH)
    return issue_token_pair(claims.user_id, role=claims.role)
