from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from xbs.core.database import Base, UTCDateTime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription(Base):
    __tablename__ = "subscription"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    test_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    current_period_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    trial_start: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    trial_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    cancel_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    pause_start: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    pause_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    billing_cycle_anchor: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    state_changes: Mapped[list[SubscriptionStateChange]] = relationship(
        "xbs.business.subscription.models.SubscriptionStateChange",
        back_populates="subscription",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "test_mode", "external_id", name="uq_subscription_external_id"),
        CheckConstraint("current_period_end > current_period_start", name="ck_subscription_valid_period"),
        CheckConstraint(
            "(trial_start IS NULL AND trial_end IS NULL) OR "
            "(trial_start IS NOT NULL AND trial_end IS NOT NULL AND trial_end > trial_start)",
            name="ck_subscription_valid_trial",
        ),
        Index("ix_subscription_scope_date", "tenant_id", "test_mode", "created_at"),
        Index("ix_subscription_customer", "tenant_id", "test_mode", "customer_id"),
        Index("ix_subscription_plan", "tenant_id", "test_mode", "plan_id"),
        Index("ix_subscription_status", "tenant_id", "test_mode", "status"),
        Index("ix_subscription_trial_end", "status", "trial_end"),
    )


class SubscriptionStateChange(Base):
    __tablename__ = "subscription_state_change"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("subscription.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_status: Mapped[str] = mapped_column(String(32), nullable=False)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    subscription: Mapped[Subscription] = relationship(
        "xbs.business.subscription.models.Subscription",
        back_populates="state_changes",
    )

    __table_args__ = (
        Index("ix_subscription_state_change_subscription", "subscription_id", "changed_at"),
    )
