from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, computed_field

from xbs.business.subscription.state import SubscriptionStatus


class SubscriptionItemData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan_id: UUID
    price_id: UUID
    quantity: int = Field(ge=0)


class SubscriptionCreate(BaseModel):
    customer_id: UUID
    plan_id: UUID
    currency: str = Field(min_length=3, max_length=3)
    quantity: int = Field(default=1, ge=1)
    trial_end: AwareDatetime | None = None
    external_id: str | None = Field(default=None, min_length=1, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SubscriptionUpdate(BaseModel):
    """Patch of the mutable fields. Only fields the caller sets are applied."""

    external_id: str | None = Field(default=None, min_length=1, max_length=255)
    quantity: int | None = Field(default=None, ge=1)
    metadata: dict[str, Any] | None = None


class ChangePlanRequest(BaseModel):
    plan_id: UUID
    immediate: bool = False


class CancelSubscriptionRequest(BaseModel):
    at_period_end: bool = True
    reason: str | None = None


class PauseSubscriptionRequest(BaseModel):
    pause_end: AwareDatetime | None = None


class SubscriptionRead(BaseModel):
    id: UUID
    tenant_id: str
    test_mode: bool
    external_id: str | None
    customer_id: UUID
    items: list[SubscriptionItemData] = Field(default_factory=list)
    currency: str
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    trial_start: datetime | None
    trial_end: datetime | None
    cancel_at_period_end: bool
    cancel_at: datetime | None
    canceled_at: datetime | None
    cancellation_reason: str | None
    pause_start: datetime | None
    pause_end: datetime | None
    billing_cycle_anchor: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def plan_id(self) -> UUID:
        return self.items[0].plan_id

    @computed_field  # type: ignore[prop-decorator]
    @property
    def price_id(self) -> UUID:
        return self.items[0].price_id

    @computed_field  # type: ignore[prop-decorator]
    @property
    def quantity(self) -> int:
        return self.items[0].quantity


class SubscriptionPage(BaseModel):
    data: list[SubscriptionRead]
    has_more: bool


class SubscriptionStateChangeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    from_status: SubscriptionStatus
    to_status: SubscriptionStatus
    reason: str | None
    changed_at: datetime
