from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_SLUG_PATTERN = r"^[a-z0-9-]+$"


class NewAccountAttributes(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(min_length=3, max_length=320, pattern=_EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=72)
    name: str = Field(min_length=3, max_length=255)
    slug: str = Field(min_length=2, max_length=255, pattern=_SLUG_PATTERN)

    @field_validator("email")
    @classmethod
    def _lowercase_email(cls, value: str) -> str:
        return value.lower()


@dataclass(slots=True)
class AccountSnapshot:
    id: str
    email: str
    name: str
    slug: str
    role: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class CreatedAccount:
    account: AccountSnapshot
    copied_categories: int
