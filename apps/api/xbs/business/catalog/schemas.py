from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


BillingInterval = Literal["day", "week", "month", "year"]
PricingModel = Literal["flat", "per_unit", "tiered", "volume"]
PlanStatus = Literal["active", "draft", "archived"]

SUPPORTED_CURRENCIES = ("NGN", "USD", "GBP", "EUR", "KES", "GHS", "ZAR", "XOF", "XAF", "EGP", "TZS")


class PriceTier(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    up_to: int | None = Field(default=None, ge=1)
    unit_amount: int = Field(ge=0)
    flat_amount: int | None = Field(default=None, ge=0)


class PriceCreate(BaseModel):
    currency: str = Field(min_length=3, max_length=3)
    unit_amount: int = Field(ge=0)
    pricing_model: PricingModel = "flat"
    tiers: list[PriceTier] | None = None


class PriceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    currency: str
    unit_amount: int
    pricing_model: PricingModel
    tiers: list[PriceTier] | None = None


class PlanCreate(BaseModel):
    external_id: str | None = Field(default=None, min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    billing_interval: BillingInterval
    interval_count: int = Field(default=1, ge=1)
    prices: list[PriceCreate] = Field(min_length=1)
    trial_period_days: int = Field(default=0, ge=0)
    features: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: PlanStatus = "active"


class PlanUpdate(BaseModel):
    """Mutable plan fields. Prices are fixed once created; a new plan carries new pricing."""

    external_id: str | None = Field(default=None, min_length=1, max_length=255)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    trial_period_days: int | None = Field(default=None, ge=0)
    features: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    status: PlanStatus | None = None


class PlanCloneRequest(BaseModel):
    external_id: str | None = Field(default=None, min_length=1, max_length=255)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    billing_interval: BillingInterval | None = None
    interval_count: int | None = Field(default=None, ge=1)
    prices: list[PriceCreate] | None = Field(default=None, min_length=1)
    trial_period_days: int | None = Field(default=None, ge=0)
    features: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class PlanRead(BaseModel):
    id: UUID
    tenant_id: str
    test_mode: bool
    external_id: str | None
    name: str
    description: str | None
    billing_interval: BillingInterval
    interval_count: int
    trial_period_days: int
    prices: list[PriceRead] = Field(default_factory=list)
    features: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: PlanStatus
    created_at: datetime
    updated_at: datetime
    archived_at: datetime | None


class PlanPage(BaseModel):
    data: list[PlanRead]
    has_more: bool


class PriceCalculationRequest(BaseModel):
    currency: str = Field(min_length=3, max_length=3)
    quantity: int = Field(default=1, ge=0)


class PriceCalculationRead(BaseModel):
    plan_id: UUID
    price_id: UUID
    currency: str
    pricing_model: PricingModel
    quantity: int
    amount: int
