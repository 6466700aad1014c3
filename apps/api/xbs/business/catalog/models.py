from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from xbs.core.database import Base, UTCDateTime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BillingPlan(Base):
    __tablename__ = "billing_plan"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    test_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    billing_interval: Mapped[str] = mapped_column(String(16), nullable=False)
    interval_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    trial_period_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    features: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", server_default="active")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)
    archived_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    prices: Mapped[list[BillingPlanPrice]] = relationship(
        "xbs.business.catalog.models.BillingPlanPrice",
        back_populates="plan",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="xbs.business.catalog.models.BillingPlanPrice.position",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "test_mode", "external_id", name="uq_billing_plan_external_id"),
        CheckConstraint("interval_count >= 1", name="ck_billing_plan_interval_count"),
        CheckConstraint("trial_period_days >= 0", name="ck_billing_plan_trial_days"),
        Index("ix_billing_plan_scope_date", "tenant_id", "test_mode", "created_at"),
        Index("ix_billing_plan_status", "tenant_id", "test_mode", "status"),
    )


class BillingPlanPrice(Base):
    __tablename__ = "billing_plan_price"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("billing_plan.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    unit_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    pricing_model: Mapped[str] = mapped_column(String(16), nullable=False, default="flat", server_default="flat")
    tiers: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    plan: Mapped[BillingPlan] = relationship("xbs.business.catalog.models.BillingPlan", back_populates="prices")

    __table_args__ = (
        UniqueConstraint("plan_id", "currency", name="uq_billing_plan_price_currency"),
        CheckConstraint("unit_amount >= 0", name="ck_billing_plan_price_unit_amount"),
        Index("ix_billing_plan_price_plan", "plan_id"),
    )
