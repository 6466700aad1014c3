from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, NoReturn

from sqlalchemy.orm import Session

from xbs import events
from xbs.business.catalog.pricing import normalize_currency, resolve_price
from xbs.business.catalog.schemas import PlanRead, PriceRead
from xbs.business.catalog.service import PlanService
from xbs.business.customers.service import CustomerService
from xbs.business.subscription.models import Subscription, utcnow
from xbs.business.subscription.periods import period_end
from xbs.business.subscription.schemas import (
    CancelSubscriptionRequest,
    ChangePlanRequest,
    PauseSubscriptionRequest,
    SubscriptionCreate,
    SubscriptionItemData,
    SubscriptionPage,
    SubscriptionRead,
    SubscriptionStateChangeRead,
    SubscriptionUpdate,
)
from xbs.business.subscription.state import (
    LifecycleOperation,
    SubscriptionStatus,
    apply_subscription_patch,
    assert_operation_allowed,
)
from xbs.business.subscription.store import SubscriptionStore
from xbs.core.errors import BillingError, ConflictError, NotFoundError, ValidationError
from xbs.metrics import observe_subscription_failure, observe_subscription_transition, observe_trial_sweep_activations
from xbs.platform.tenancy.context import TenantScope


logger = logging.getLogger("xbs.subscription")


@dataclass(slots=True)
class SubscriptionService:
    """Subscription lifecycle: every operation is one locked read, its precondition
    checks, then a single commit. A failed check raises before anything is written."""

    store: SubscriptionStore = SubscriptionStore()
    plan_service: PlanService = field(default_factory=PlanService)
    customer_service: CustomerService = field(default_factory=CustomerService)
    clock: Callable[[], datetime] = utcnow

    def create_subscription(self, session: Session, scope: TenantScope, payload: SubscriptionCreate) -> SubscriptionRead:
        now = self.clock()

        try:
            if not self.customer_service.customer_exists(session, scope, payload.customer_id):
                raise NotFoundError("Customer not found")
            plan = self.plan_service.get_plan(session, scope, payload.plan_id, include_archived=True)
            self._assert_plan_sellable(plan)
            price = self._resolve_price(plan, payload.currency)
            if payload.external_id and self.store.external_id_taken(session, scope, payload.external_id):
                raise ConflictError(f"Subscription with external_id '{payload.external_id}' already exists")
            if payload.trial_end is not None and payload.trial_end <= now:
                raise ValidationError("trial_end must be in the future")
        except BillingError as exc:
            self._reject("create", exc)

        trial_start: datetime | None = None
        trial_end: datetime | None = None
        if payload.trial_end is not None:
            trial_start, trial_end = now, payload.trial_end
        elif plan.trial_period_days > 0:
            trial_start, trial_end = now, now + timedelta(days=plan.trial_period_days)

        if trial_end is not None:
            status = SubscriptionStatus.TRIALING
            current_period_end = trial_end
        else:
            status = SubscriptionStatus.ACTIVE
            current_period_end = period_end(now, plan.billing_interval, plan.interval_count)

        subscription = Subscription(
            tenant_id=scope.tenant_id,
            test_mode=scope.test_mode,
            external_id=payload.external_id,
            customer_id=payload.customer_id,
            plan_id=plan.id,
            items=[self._item(plan, price, payload.quantity)],
            currency=price.currency,
            status=status.value,
            current_period_start=now,
            current_period_end=current_period_end,
            trial_start=trial_start,
            trial_end=trial_end,
            cancel_at_period_end=False,
            billing_cycle_anchor=trial_end or now,
            metadata_=dict(payload.metadata),
            created_at=now,
            updated_at=now,
        )
        self.store.add(session, subscription)
        self.store.save(session, subscription)

        self._emit_subscription_event("subscription.created", subscription, scope)
        self._log_transition("create", subscription, scope)
        return self._to_subscription_read(subscription)

    def get_subscription(self, session: Session, scope: TenantScope, subscription_id: uuid.UUID) -> SubscriptionRead:
        return self._to_subscription_read(self._get_subscription(session, scope, subscription_id))

    def get_subscription_by_external_id(self, session: Session, scope: TenantScope, external_id: str) -> SubscriptionRead:
        subscription = self.store.get_by_external_id(session, scope, external_id)
        if subscription is None:
            raise NotFoundError("Subscription not found")
        return self._to_subscription_read(subscription)

    def list_subscriptions(
        self,
        session: Session,
        scope: TenantScope,
        *,
        customer_id: uuid.UUID | None = None,
        plan_id: uuid.UUID | None = None,
        status: SubscriptionStatus | None = None,
        limit: int | None = None,
        starting_after: uuid.UUID | None = None,
    ) -> SubscriptionPage:
        page = self.store.list_subscriptions(
            session,
            scope,
            customer_id=customer_id,
            plan_id=plan_id,
            status=status,
            limit=limit,
            starting_after=starting_after,
        )
        return SubscriptionPage(data=[self._to_subscription_read(row) for row in page.data], has_more=page.has_more)

    def update_subscription(
        self,
        session: Session,
        scope: TenantScope,
        subscription_id: uuid.UUID,
        payload: SubscriptionUpdate,
    ) -> SubscriptionRead:
        subscription = self._get_subscription(session, scope, subscription_id, for_update=True)
        self._assert_allowed(subscription, LifecycleOperation.UPDATE)

        changes = apply_subscription_patch(subscription.items, payload)
        external_id = changes.get("external_id")
        if external_id and external_id != subscription.external_id:
            if self.store.external_id_taken(session, scope, external_id, exclude_id=subscription.id):
                self._reject(
                    LifecycleOperation.UPDATE,
                    ConflictError(f"Subscription with external_id '{external_id}' already exists"),
                )

        for name, value in changes.items():
            setattr(subscription, name, value)
        subscription.updated_at = self.clock()
        self.store.save(session, subscription)

        self._emit_subscription_event("subscription.updated", subscription, scope, {"fields": sorted(payload.model_fields_set)})
        self._log_transition("update", subscription, scope)
        return self._to_subscription_read(subscription)

    def change_plan(
        self,
        session: Session,
        scope: TenantScope,
        subscription_id: uuid.UUID,
        payload: ChangePlanRequest,
    ) -> SubscriptionRead:
        subscription = self._get_subscription(session, scope, subscription_id, for_update=True)
        self._assert_allowed(subscription, LifecycleOperation.CHANGE_PLAN)

        try:
            plan = self.plan_service.get_plan(session, scope, payload.plan_id, include_archived=True)
            self._assert_plan_sellable(plan)
            price = self._resolve_price(plan, subscription.currency)
        except BillingError as exc:
            self._reject(LifecycleOperation.CHANGE_PLAN, exc)

        now = self.clock()
        previous_plan_id = subscription.plan_id
        items = subscription.items
        quantity = items[0]["quantity"] if items else 1
        subscription.items = [self._item(plan, price, quantity), *[dict(item) for item in items[1:]]]
        subscription.plan_id = plan.id
        if payload.immediate:
            subscription.current_period_start = now
            subscription.current_period_end = period_end(now, plan.billing_interval, plan.interval_count)
            subscription.billing_cycle_anchor = now
            self._sync_scheduled_cancel(subscription)
        subscription.updated_at = now
        self.store.save(session, subscription)

        self._emit_subscription_event(
            "subscription.plan_changed",
            subscription,
            scope,
            {"previous_plan_id": str(previous_plan_id), "immediate": payload.immediate},
        )
        self._log_transition("change_plan", subscription, scope)
        return self._to_subscription_read(subscription)

    def cancel_subscription(
        self,
        session: Session,
        scope: TenantScope,
        subscription_id: uuid.UUID,
        payload: CancelSubscriptionRequest | None = None,
    ) -> SubscriptionRead:
        payload = payload or CancelSubscriptionRequest()
        subscription = self._get_subscription(session, scope, subscription_id, for_update=True)
        self._assert_allowed(subscription, LifecycleOperation.CANCEL)

        now = self.clock()
        previous_status = subscription.status
        if payload.at_period_end:
            subscription.cancel_at_period_end = True
            subscription.cancel_at = subscription.current_period_end
        else:
            subscription.status = SubscriptionStatus.CANCELED.value
            subscription.cancel_at_period_end = False
            subscription.canceled_at = now
            subscription.cancel_at = now
        subscription.cancellation_reason = payload.reason
        subscription.updated_at = now
        self.store.record_state_change(
            session,
            subscription,
            previous_status,
            subscription.status,
            reason=payload.reason,
            changed_at=now,
        )
        self.store.save(session, subscription)

        event_type = "subscription.cancel_scheduled" if payload.at_period_end else "subscription.canceled"
        self._emit_subscription_event(event_type, subscription, scope, {"reason": payload.reason})
        self._log_transition("cancel", subscription, scope, from_status=previous_status)
        return self._to_subscription_read(subscription)

    def reactivate_subscription(self, session: Session, scope: TenantScope, subscription_id: uuid.UUID) -> SubscriptionRead:
        subscription = self._get_subscription(session, scope, subscription_id, for_update=True)
        self._assert_allowed(subscription, LifecycleOperation.REACTIVATE)
        if not subscription.cancel_at_period_end:
            self._reject(LifecycleOperation.REACTIVATE, ValidationError("Subscription is not scheduled for cancellation"))

        subscription.cancel_at_period_end = False
        subscription.cancel_at = None
        subscription.cancellation_reason = None
        subscription.updated_at = self.clock()
        self.store.save(session, subscription)

        self._emit_subscription_event("subscription.reactivated", subscription, scope)
        self._log_transition("reactivate", subscription, scope)
        return self._to_subscription_read(subscription)

    def pause_subscription(
        self,
        session: Session,
        scope: TenantScope,
        subscription_id: uuid.UUID,
        payload: PauseSubscriptionRequest | None = None,
    ) -> SubscriptionRead:
        payload = payload or PauseSubscriptionRequest()
        subscription = self._get_subscription(session, scope, subscription_id, for_update=True)
        self._assert_allowed(subscription, LifecycleOperation.PAUSE)

        now = self.clock()
        if payload.pause_end is not None and payload.pause_end <= now:
            self._reject(LifecycleOperation.PAUSE, ValidationError("pause_end must be in the future"))

        previous_status = subscription.status
        subscription.status = SubscriptionStatus.PAUSED.value
        subscription.pause_start = now
        subscription.pause_end = payload.pause_end
        subscription.updated_at = now
        self.store.record_state_change(session, subscription, previous_status, subscription.status, reason=None, changed_at=now)
        self.store.save(session, subscription)

        self._emit_subscription_event("subscription.paused", subscription, scope)
        self._log_transition("pause", subscription, scope, from_status=previous_status)
        return self._to_subscription_read(subscription)

    def resume_subscription(self, session: Session, scope: TenantScope, subscription_id: uuid.UUID) -> SubscriptionRead:
        subscription = self._get_subscription(session, scope, subscription_id, for_update=True)
        self._assert_allowed(subscription, LifecycleOperation.RESUME)

        plan = self.plan_service.get_plan(session, scope, subscription.plan_id, include_archived=True)
        now = self.clock()
        previous_status = subscription.status
        # paused time is not credited back: the new period starts at resume time
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.current_period_start = now
        subscription.current_period_end = period_end(now, plan.billing_interval, plan.interval_count)
        subscription.billing_cycle_anchor = now
        subscription.pause_start = None
        subscription.pause_end = None
        self._sync_scheduled_cancel(subscription)
        subscription.updated_at = now
        self.store.record_state_change(session, subscription, previous_status, subscription.status, reason=None, changed_at=now)
        self.store.save(session, subscription)

        self._emit_subscription_event("subscription.resumed", subscription, scope)
        self._log_transition("resume", subscription, scope, from_status=previous_status)
        return self._to_subscription_read(subscription)

    def activate_trial(self, session: Session, scope: TenantScope, subscription_id: uuid.UUID) -> SubscriptionRead:
        """Move an expired trial to ``active``. Already-active subscriptions are returned
        unchanged so the scheduler can retry safely."""
        subscription = self._get_subscription(session, scope, subscription_id, for_update=True)
        if subscription.status == SubscriptionStatus.ACTIVE.value:
            current = self._to_subscription_read(subscription)
            session.rollback()
            return current
        self._assert_allowed(subscription, LifecycleOperation.ACTIVATE_TRIAL)

        now = self.clock()
        trial_end = subscription.trial_end
        if trial_end is None or trial_end > now:
            self._reject(LifecycleOperation.ACTIVATE_TRIAL, ValidationError("Trial has not ended yet"))

        plan = self.plan_service.get_plan(session, scope, subscription.plan_id, include_archived=True)
        previous_status = subscription.status
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.current_period_start = trial_end
        subscription.current_period_end = period_end(trial_end, plan.billing_interval, plan.interval_count)
        self._sync_scheduled_cancel(subscription)
        subscription.updated_at = now
        self.store.record_state_change(
            session,
            subscription,
            previous_status,
            subscription.status,
            reason="trial_ended",
            changed_at=now,
        )
        self.store.save(session, subscription)

        self._emit_subscription_event("subscription.trial_ended", subscription, scope)
        self._log_transition("activate_trial", subscription, scope, from_status=previous_status)
        return self._to_subscription_read(subscription)

    def activate_expired_trials(self, session: Session, *, limit: int = 500) -> list[uuid.UUID]:
        """Scheduler entry point: activate every trial whose ``trial_end`` has passed."""
        activated: list[uuid.UUID] = []
        for subscription_id, tenant_id, test_mode in self.store.find_expired_trials(session, self.clock(), limit=limit):
            scope = TenantScope(tenant_id=tenant_id, test_mode=test_mode)
            try:
                self.activate_trial(session, scope, subscription_id)
            except BillingError as exc:
                session.rollback()
                logger.warning(
                    "subscription.trial_activation_skipped",
                    extra={"subscription_id": str(subscription_id), "tenant_id": tenant_id, "error": exc.message},
                )
                continue
            activated.append(subscription_id)

        observe_trial_sweep_activations(len(activated))
        logger.info("subscription.trial_sweep", extra={"operation": "activate_trial", "count": len(activated)})
        return activated

    def list_state_changes(
        self,
        session: Session,
        scope: TenantScope,
        subscription_id: uuid.UUID,
    ) -> list[SubscriptionStateChangeRead]:
        subscription = self._get_subscription(session, scope, subscription_id)
        rows = self.store.list_state_changes(session, subscription.id)
        return [SubscriptionStateChangeRead.model_validate(row) for row in rows]

    def _get_subscription(
        self,
        session: Session,
        scope: TenantScope,
        subscription_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Subscription:
        subscription = self.store.get(session, scope, subscription_id, for_update=for_update)
        if subscription is None:
            raise NotFoundError("Subscription not found")
        return subscription

    def _assert_allowed(self, subscription: Subscription, operation: LifecycleOperation) -> None:
        try:
            assert_operation_allowed(subscription.status, operation)
        except ValidationError as exc:
            self._reject(operation, exc)

    @staticmethod
    def _reject(operation: LifecycleOperation | str, exc: BillingError) -> NoReturn:
        label = operation.value if isinstance(operation, LifecycleOperation) else operation
        observe_subscription_failure(label, exc.code)
        raise exc

    @staticmethod
    def _sync_scheduled_cancel(subscription: Subscription) -> None:
        # a scheduled cancellation always lands on the end of the current period
        if subscription.cancel_at_period_end:
            subscription.cancel_at = subscription.current_period_end

    @staticmethod
    def _assert_plan_sellable(plan: PlanRead) -> None:
        if plan.status != "active":
            raise ValidationError(f"Plan is not active (status: {plan.status})")

    @staticmethod
    def _resolve_price(plan: PlanRead, currency: str) -> PriceRead:
        price = resolve_price(plan, currency)
        if price is None:
            raise ValidationError(f"Plan has no price in currency {normalize_currency(currency)}")
        return price

    @staticmethod
    def _item(plan: PlanRead, price: PriceRead, quantity: int) -> dict[str, Any]:
        return {"plan_id": str(plan.id), "price_id": str(price.id), "quantity": quantity}

    def _emit_subscription_event(
        self,
        event_type: str,
        subscription: Subscription,
        scope: TenantScope,
        extra: dict[str, Any] | None = None,
    ) -> None:
        envelope: dict[str, Any] = {
            "event_type": event_type,
            "subscription_id": str(subscription.id),
            "tenant_id": subscription.tenant_id,
            "test_mode": subscription.test_mode,
            "customer_id": str(subscription.customer_id),
            "plan_id": str(subscription.plan_id),
            "status": subscription.status,
            "currency": subscription.currency,
            "period_start": subscription.current_period_start.isoformat(),
            "period_end": subscription.current_period_end.isoformat(),
            "correlation_id": scope.correlation_id,
        }
        if extra:
            envelope["data"] = extra
        events.publish(envelope)

    @staticmethod
    def _log_transition(
        operation: str,
        subscription: Subscription,
        scope: TenantScope,
        *,
        from_status: str | None = None,
    ) -> None:
        observe_subscription_transition(operation, subscription.status)
        logger.info(
            f"subscription.{operation}",
            extra={
                "operation": operation,
                "subscription_id": str(subscription.id),
                "tenant_id": scope.tenant_id,
                "test_mode": scope.test_mode,
                "status": subscription.status,
                "from_status": from_status,
            },
        )

    @staticmethod
    def _to_subscription_read(subscription: Subscription) -> SubscriptionRead:
        return SubscriptionRead(
            id=subscription.id,
            tenant_id=subscription.tenant_id,
            test_mode=subscription.test_mode,
            external_id=subscription.external_id,
            customer_id=subscription.customer_id,
            items=[SubscriptionItemData.model_validate(item) for item in subscription.items],
            currency=subscription.currency,
            status=SubscriptionStatus(subscription.status),
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            trial_start=subscription.trial_start,
            trial_end=subscription.trial_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
            cancel_at=subscription.cancel_at,
            canceled_at=subscription.canceled_at,
            cancellation_reason=subscription.cancellation_reason,
            pause_start=subscription.pause_start,
            pause_end=subscription.pause_end,
            billing_cycle_anchor=subscription.billing_cycle_anchor,
            metadata=subscription.metadata_ or {},
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )


subscription_service = SubscriptionService()
