from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class CustomerCreate(BaseModel):
    email: EmailStr
    external_id: str | None = Field(default=None, min_length=1, max_length=255)
    name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=64)
    country: str | None = Field(default=None, max_length=64)
    tax_id: str | None = Field(default=None, max_length=64)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CustomerUpdate(BaseModel):
    """Partial update; only fields present in the request are applied.

    ``name``, ``phone``, ``country`` and ``tax_id`` may be cleared with ``null``.
    """

    email: EmailStr | None = None
    external_id: str | None = Field(default=None, min_length=1, max_length=255)
    name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=64)
    country: str | None = Field(default=None, max_length=64)
    tax_id: str | None = Field(default=None, max_length=64)
    metadata: dict[str, Any] | None = None


class CustomerMetadataMerge(BaseModel):
    metadata: dict[str, Any]


class CustomerRead(BaseModel):
    id: UUID
    tenant_id: str
    test_mode: bool
    external_id: str
    email: str
    name: str | None
    phone: str | None = None
    country: str | None = None
    tax_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None


class CustomerPage(BaseModel):
    data: list[CustomerRead]
    has_more: bool
