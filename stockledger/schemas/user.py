from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Role = Literal["admin", "staff"]


class UserCreate(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={"example": {"username": "warehouse-clerk", "email": "clerk@example.com", "role": "staff"}},
    )

    username: str = Field(min_length=1, max_length=64)
    email: Optional[str] = Field(default=None, max_length=255)
    role: Role = "staff"


class UserUpdate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: Optional[str] = Field(default=None, min_length=1, max_length=64)
    email: Optional[str] = Field(default=None, max_length=255)
    role: Optional[Role] = None


class UserOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    username: str
    email: Optional[str] = None
    role: str
    created_at: datetime
