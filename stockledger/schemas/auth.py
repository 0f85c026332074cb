from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TokenRequest(BaseModel):
    """API key exchange on behalf of a named user."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={"example": {"apiKey": "super-secret-key", "username": "warehouse-clerk"}},
    )

    api_key: str = Field(min_length=1)
    username: str = Field(min_length=1, max_length=64)


class RefreshRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    refresh_token: str = Field(min_length=1)


class TokenResponse(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "accessToken": "<jwt>",
                "refreshToken": "<jwt>",
                "tokenType": "bearer",
                "expiresIn": 900,
                "role": "staff",
            }
        },
    )

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    role: Optional[str] = None
