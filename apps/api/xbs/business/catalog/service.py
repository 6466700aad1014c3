from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from xbs.business.catalog.models import BillingPlan, BillingPlanPrice, utcnow
from xbs.business.catalog.pricing import calculate_price, normalize_currency, resolve_price, validate_price_definition
from xbs.business.catalog.repository import PlanRepository
from xbs.business.catalog.schemas import (
    PlanCloneRequest,
    PlanCreate,
    PlanPage,
    PlanRead,
    PlanStatus,
    PlanUpdate,
    PriceCalculationRead,
    PriceCalculationRequest,
    PriceCreate,
    PriceRead,
    PriceTier,
)
from xbs.core.errors import ConflictError, NotFoundError, ValidationError
from xbs.platform.tenancy.context import TenantScope


logger = logging.getLogger("xbs.catalog")


@dataclass(slots=True)
class PlanService:
    plan_repository: PlanRepository = PlanRepository()
    clock: Callable[[], datetime] = utcnow

    def create_plan(self, session: Session, scope: TenantScope, payload: PlanCreate) -> PlanRead:
        self._validate_plan_input(payload)
        if payload.external_id and self.plan_repository.external_id_taken(session, scope, payload.external_id):
            raise ConflictError(f"Plan with external_id '{payload.external_id}' already exists")

        now = self.clock()
        plan = BillingPlan(
            tenant_id=scope.tenant_id,
            test_mode=scope.test_mode,
            external_id=payload.external_id,
            name=payload.name.strip(),
            description=payload.description,
            billing_interval=payload.billing_interval,
            interval_count=payload.interval_count,
            trial_period_days=payload.trial_period_days,
            features=dict(payload.features),
            metadata_=dict(payload.metadata),
            status=payload.status,
            created_at=now,
            updated_at=now,
            archived_at=now if payload.status == "archived" else None,
        )
        plan.prices = [self._build_price(price, position) for position, price in enumerate(payload.prices)]
        session.add(plan)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError(f"Plan with external_id '{payload.external_id}' already exists")
        session.refresh(plan)

        logger.info("plan.created", extra={"plan_id": str(plan.id), "tenant_id": scope.tenant_id, "test_mode": scope.test_mode})
        return self._to_plan_read(plan)

    def get_plan(self, session: Session, scope: TenantScope, plan_id: uuid.UUID, *, include_archived: bool = False) -> PlanRead:
        return self._to_plan_read(self._get_plan(session, scope, plan_id, include_archived=include_archived))

    def get_plan_by_external_id(
        self,
        session: Session,
        scope: TenantScope,
        external_id: str,
        *,
        include_archived: bool = False,
    ) -> PlanRead:
        plan = self.plan_repository.get_by_external_id(session, scope, external_id)
        if plan is None or (plan.status == "archived" and not include_archived):
            raise NotFoundError("Plan not found")
        return self._to_plan_read(plan)

    def update_plan(self, session: Session, scope: TenantScope, plan_id: uuid.UUID, payload: PlanUpdate) -> PlanRead:
        plan = self._get_plan(session, scope, plan_id, include_archived=True, for_update=True)
        changes = payload.model_dump(exclude_unset=True)

        if plan.status == "archived" and changes.get("status") not in {"active", "draft"}:
            raise ValidationError("Cannot update archived plan. Change status first.")

        external_id = changes.get("external_id")
        if external_id and external_id != plan.external_id:
            if self.plan_repository.external_id_taken(session, scope, external_id, exclude_id=plan.id):
                raise ConflictError(f"Plan with external_id '{external_id}' already exists")

        for field in ("external_id", "description", "trial_period_days", "features"):
            if field in changes and changes[field] is not None:
                setattr(plan, field, changes[field])
        if changes.get("name") is not None:
            plan.name = changes["name"].strip()
        if changes.get("metadata") is not None:
            plan.metadata_ = changes["metadata"]
        if changes.get("status") is not None:
            self._apply_status(plan, changes["status"])

        plan.updated_at = self.clock()
        session.add(plan)
        session.commit()
        session.refresh(plan)

        logger.info("plan.updated", extra={"plan_id": str(plan.id), "tenant_id": scope.tenant_id})
        return self._to_plan_read(plan)

    def archive_plan(self, session: Session, scope: TenantScope, plan_id: uuid.UUID) -> PlanRead:
        plan = self._get_plan(session, scope, plan_id, include_archived=True, for_update=True)
        if plan.status == "archived":
            raise ValidationError("Plan is already archived")

        self._apply_status(plan, "archived")
        plan.updated_at = self.clock()
        session.add(plan)
        session.commit()
        session.refresh(plan)

        logger.info("plan.archived", extra={"plan_id": str(plan.id), "tenant_id": scope.tenant_id})
        return self._to_plan_read(plan)

    def unarchive_plan(self, session: Session, scope: TenantScope, plan_id: uuid.UUID) -> PlanRead:
        plan = self.plan_repository.get(session, scope, plan_id, for_update=True)
        if plan is None or plan.status != "archived":
            raise NotFoundError("Archived plan not found")

        self._apply_status(plan, "active")
        plan.updated_at = self.clock()
        session.add(plan)
        session.commit()
        session.refresh(plan)

        logger.info("plan.unarchived", extra={"plan_id": str(plan.id), "tenant_id": scope.tenant_id})
        return self._to_plan_read(plan)

    def list_plans(
        self,
        session: Session,
        scope: TenantScope,
        *,
        limit: int | None = None,
        starting_after: uuid.UUID | None = None,
        status: PlanStatus | None = None,
        include_archived: bool = False,
    ) -> PlanPage:
        stmt = select(BillingPlan).options(selectinload(BillingPlan.prices))
        if status is not None:
            stmt = stmt.where(BillingPlan.status == status)
        elif not include_archived:
            stmt = stmt.where(BillingPlan.status != "archived")

        page = self.plan_repository.paginate(session, scope, stmt, limit=limit, starting_after=starting_after)
        return PlanPage(data=[self._to_plan_read(row) for row in page.data], has_more=page.has_more)

    def clone_plan(
        self,
        session: Session,
        scope: TenantScope,
        plan_id: uuid.UUID,
        overrides: PlanCloneRequest | None = None,
    ) -> PlanRead:
        existing = self.get_plan(session, scope, plan_id, include_archived=True)
        changes = overrides.model_dump(exclude_unset=True, exclude_none=True) if overrides is not None else {}

        prices = (
            overrides.prices
            if overrides is not None and overrides.prices is not None
            else [
                PriceCreate(
                    currency=price.currency,
                    unit_amount=price.unit_amount,
                    pricing_model=price.pricing_model,
                    tiers=price.tiers,
                )
                for price in existing.prices
            ]
        )
        payload = PlanCreate(
            external_id=changes.get("external_id"),
            name=changes.get("name", f"{existing.name} (Copy)"),
            description=changes.get("description", existing.description),
            billing_interval=changes.get("billing_interval", existing.billing_interval),
            interval_count=changes.get("interval_count", existing.interval_count),
            prices=prices,
            trial_period_days=changes.get("trial_period_days", existing.trial_period_days),
            features=changes.get("features", existing.features),
            metadata=changes.get("metadata", existing.metadata),
            status="draft",
        )
        return self.create_plan(session, scope, payload)

    def calculate_plan_price(
        self,
        session: Session,
        scope: TenantScope,
        plan_id: uuid.UUID,
        payload: PriceCalculationRequest,
    ) -> PriceCalculationRead:
        plan = self.get_plan(session, scope, plan_id, include_archived=True)
        price = resolve_price(plan, payload.currency)
        if price is None:
            raise ValidationError(f"Plan has no price in currency {normalize_currency(payload.currency)}")
        return PriceCalculationRead(
            plan_id=plan.id,
            price_id=price.id,
            currency=price.currency,
            pricing_model=price.pricing_model,
            quantity=payload.quantity,
            amount=calculate_price(price, payload.quantity),
        )

    def _get_plan(
        self,
        session: Session,
        scope: TenantScope,
        plan_id: uuid.UUID,
        *,
        include_archived: bool,
        for_update: bool = False,
    ) -> BillingPlan:
        plan = self.plan_repository.get(session, scope, plan_id, for_update=for_update)
        if plan is None or (plan.status == "archived" and not include_archived):
            raise NotFoundError("Plan not found")
        return plan

    def _apply_status(self, plan: BillingPlan, status: str) -> None:
        if status == "archived" and plan.status != "archived":
            plan.archived_at = self.clock()
        elif status != "archived":
            plan.archived_at = None
        plan.status = status

    @staticmethod
    def _validate_plan_input(payload: PlanCreate) -> None:
        if not payload.name.strip():
            raise ValidationError("Plan name is required")
        seen: set[str] = set()
        for price in payload.prices:
            validate_price_definition(price)
            currency = normalize_currency(price.currency)
            if currency in seen:
                raise ValidationError(f"Duplicate price for currency {currency}")
            seen.add(currency)

    @staticmethod
    def _build_price(price: PriceCreate, position: int) -> BillingPlanPrice:
        return BillingPlanPrice(
            position=position,
            currency=normalize_currency(price.currency),
            unit_amount=price.unit_amount,
            pricing_model=price.pricing_model,
            tiers=[tier.model_dump() for tier in price.tiers] if price.tiers else None,
        )

    @staticmethod
    def _to_price_read(price: BillingPlanPrice) -> PriceRead:
        return PriceRead(
            id=price.id,
            currency=price.currency,
            unit_amount=price.unit_amount,
            pricing_model=price.pricing_model,
            tiers=[PriceTier.model_validate(tier) for tier in price.tiers] if price.tiers else None,
        )

    def _to_plan_read(self, plan: BillingPlan) -> PlanRead:
        return PlanRead(
            id=plan.id,
            tenant_id=plan.tenant_id,
            test_mode=plan.test_mode,
            external_id=plan.external_id,
            name=plan.name,
            description=plan.description,
            billing_interval=plan.billing_interval,
            interval_count=plan.interval_count,
            trial_period_days=plan.trial_period_days,
            prices=[self._to_price_read(price) for price in plan.prices],
            features=plan.features or {},
            metadata=plan.metadata_ or {},
            status=plan.status,
            created_at=plan.created_at,
            updated_at=plan.updated_at,
            archived_at=plan.archived_at,
        )


plan_service = PlanService()
