from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from xbs import events
from xbs.business.catalog.schemas import PlanCreate, PlanRead, PriceCreate, PriceTier
from xbs.business.catalog.service import PlanService
from xbs.business.customers.schemas import CustomerCreate, CustomerRead
from xbs.business.customers.service import CustomerService
from xbs.business.subscription.schemas import (
    CancelSubscriptionRequest,
    ChangePlanRequest,
    PauseSubscriptionRequest,
    SubscriptionCreate,
    SubscriptionUpdate,
)
from xbs.business.subscription.service import SubscriptionService
from xbs.business.subscription.state import SubscriptionStatus
from xbs.business.subscription.store import SubscriptionStore
from xbs.platform.tenancy.repository import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, clamp_limit
from xbs.core.database import Base
from xbs.core.errors import ConflictError, NotFoundError, ValidationError
from xbs.platform.tenancy.context import TenantScope


START = datetime(2024, 1, 31, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_events() -> Generator[None, None, None]:
    events.published_events.clear()
    yield
    events.published_events.clear()


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture()
def plans(clock: FixedClock) -> PlanService:
    return PlanService(clock=clock)


@pytest.fixture()
def customers(clock: FixedClock) -> CustomerService:
    return CustomerService(clock=clock)


@pytest.fixture()
def service(clock: FixedClock, plans: PlanService, customers: CustomerService) -> SubscriptionService:
    return SubscriptionService(store=SubscriptionStore(), plan_service=plans, customer_service=customers, clock=clock)


def _scope(tenant_id: str = "app-1", test_mode: bool = False) -> TenantScope:
    return TenantScope(tenant_id=tenant_id, test_mode=test_mode, correlation_id="corr-sub")


def _plan(
    session: Session,
    plans: PlanService,
    *,
    scope: TenantScope | None = None,
    trial_period_days: int = 0,
    billing_interval: str = "month",
    interval_count: int = 1,
    currencies: tuple[str, ...] = ("USD",),
    external_id: str | None = None,
) -> PlanRead:
    return plans.create_plan(
        session,
        scope or _scope(),
        PlanCreate(
            external_id=external_id,
            name="Pro",
            billing_interval=billing_interval,
            interval_count=interval_count,
            trial_period_days=trial_period_days,
            prices=[PriceCreate(currency=currency, unit_amount=5000) for currency in currencies],
        ),
    )


def _customer(session: Session, customers: CustomerService, *, scope: TenantScope | None = None) -> CustomerRead:
    return customers.create_customer(session, scope or _scope(), CustomerCreate(email="ada@example.com", name="Ada"))


def _subscribe(
    session: Session,
    service: SubscriptionService,
    plan: PlanRead,
    customer: CustomerRead,
    *,
    scope: TenantScope | None = None,
    **overrides: object,
):
    payload = SubscriptionCreate(customer_id=customer.id, plan_id=plan.id, currency="usd", **overrides)
    return service.create_subscription(session, scope or _scope(), payload)


def test_create_without_trial_starts_calendar_period(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    plan = _plan(db_session, plans)
    customer = _customer(db_session, customers)

    subscription = _subscribe(db_session, service, plan, customer, quantity=3, metadata={"source": "checkout"})

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.current_period_start == START
    assert subscription.current_period_end == datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert subscription.billing_cycle_anchor == START
    assert subscription.trial_start is None and subscription.trial_end is None
    assert subscription.currency == "USD"
    assert subscription.plan_id == plan.id
    assert subscription.price_id == plan.prices[0].id
    assert subscription.quantity == 3
    assert subscription.metadata == {"source": "checkout"}
    assert [event["event_type"] for event in events.published_events] == ["subscription.created"]
    assert events.published_events[0]["correlation_id"] == "corr-sub"


def test_create_with_plan_trial_round_trips(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    plan = _plan(db_session, plans, trial_period_days=14)
    customer = _customer(db_session, customers)

    subscription = _subscribe(db_session, service, plan, customer)

    assert subscription.status == SubscriptionStatus.TRIALING
    assert subscription.trial_start == subscription.created_at
    assert subscription.trial_end == subscription.created_at + timedelta(days=14)
    assert subscription.current_period_end == subscription.trial_end
    assert subscription.billing_cycle_anchor == subscription.trial_end

    reloaded = service.get_subscription(db_session, _scope(), subscription.id)
    assert reloaded.trial_end == subscription.trial_end
    assert reloaded.trial_end.tzinfo is not None


def test_explicit_trial_end_overrides_plan_trial(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    plan = _plan(db_session, plans, trial_period_days=14)
    customer = _customer(db_session, customers)

    subscription = _subscribe(db_session, service, plan, customer, trial_end=START + timedelta(days=3))

    assert subscription.status == SubscriptionStatus.TRIALING
    assert subscription.trial_end == START + timedelta(days=3)


def test_create_rejects_invalid_requests_before_writing(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    plan = _plan(db_session, plans)
    customer = _customer(db_session, customers)
    other_tenant_customer = _customer(db_session, customers, scope=_scope("app-2"))

    with pytest.raises(NotFoundError):
        _subscribe(db_session, service, plan, other_tenant_customer)

    with pytest.raises(ValidationError, match="no price in currency EUR"):
        service.create_subscription(
            db_session,
            _scope(),
            SubscriptionCreate(customer_id=customer.id, plan_id=plan.id, currency="eur"),
        )

    with pytest.raises(ValidationError, match="trial_end must be in the future"):
        _subscribe(db_session, service, plan, customer, trial_end=START - timedelta(seconds=1))

    plans.archive_plan(db_session, _scope(), plan.id)
    with pytest.raises(ValidationError, match="not active"):
        _subscribe(db_session, service, plan, customer)

    assert service.list_subscriptions(db_session, _scope()).data == []
    assert not events.published_events


def test_duplicate_external_id_conflicts_within_tenant_and_mode(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    plan = _plan(db_session, plans)
    customer = _customer(db_session, customers)
    _subscribe(db_session, service, plan, customer, external_id="sub-001")

    with pytest.raises(ConflictError):
        _subscribe(db_session, service, plan, customer, external_id="sub-001")

    test_scope = _scope(test_mode=True)
    test_plan = _plan(db_session, plans, scope=test_scope)
    test_customer = _customer(db_session, customers, scope=test_scope)
    created = _subscribe(db_session, service, test_plan, test_customer, scope=test_scope, external_id="sub-001")

    assert created.test_mode is True
    found = service.get_subscription_by_external_id(db_session, test_scope, "sub-001")
    assert found.id == created.id


def test_tenant_and_mode_isolation(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    plan = _plan(db_session, plans)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, plan, customer)

    with pytest.raises(NotFoundError):
        service.get_subscription(db_session, _scope("app-2"), subscription.id)
    with pytest.raises(NotFoundError):
        service.get_subscription(db_session, _scope(test_mode=True), subscription.id)
    with pytest.raises(NotFoundError):
        service.cancel_subscription(db_session, _scope("app-2"), subscription.id)

    assert service.list_subscriptions(db_session, _scope("app-2")).data == []


def test_activate_trial_is_idempotent(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    plan = _plan(db_session, plans, trial_period_days=14)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, plan, customer)

    with pytest.raises(ValidationError, match="Trial has not ended"):
        service.activate_trial(db_session, _scope(), subscription.id)

    clock.advance(days=15)
    activated = service.activate_trial(db_session, _scope(), subscription.id)

    assert activated.status == SubscriptionStatus.ACTIVE
    assert activated.current_period_start == subscription.trial_end
    assert activated.current_period_end == datetime(2024, 3, 14, tzinfo=timezone.utc)

    clock.advance(days=1)
    again = service.activate_trial(db_session, _scope(), subscription.id)

    assert again.model_dump() == activated.model_dump()
    changes = service.list_state_changes(db_session, _scope(), subscription.id)
    assert [(row.from_status, row.to_status, row.reason) for row in changes] == [
        (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE, "trial_ended")
    ]
    assert [event["event_type"] for event in events.published_events].count("subscription.trial_ended") == 1


def test_activate_expired_trials_sweeps_only_due_trials(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    short_plan = _plan(db_session, plans, trial_period_days=3)
    long_plan = _plan(db_session, plans, trial_period_days=30)
    customer = _customer(db_session, customers)
    due = _subscribe(db_session, service, short_plan, customer)
    not_due = _subscribe(db_session, service, long_plan, customer)

    test_scope = _scope(test_mode=True)
    test_due = _subscribe(
        db_session,
        service,
        _plan(db_session, plans, scope=test_scope, trial_period_days=3),
        _customer(db_session, customers, scope=test_scope),
        scope=test_scope,
    )

    clock.advance(days=5)
    activated = service.activate_expired_trials(db_session)

    assert set(activated) == {due.id, test_due.id}
    assert service.get_subscription(db_session, _scope(), due.id).status == SubscriptionStatus.ACTIVE
    assert service.get_subscription(db_session, test_scope, test_due.id).status == SubscriptionStatus.ACTIVE
    assert service.get_subscription(db_session, _scope(), not_due.id).status == SubscriptionStatus.TRIALING

    assert service.activate_expired_trials(db_session) == []


def test_cancel_at_period_end_then_reactivate(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    plan = _plan(db_session, plans)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, plan, customer)

    scheduled = service.cancel_subscription(
        db_session,
        _scope(),
        subscription.id,
        CancelSubscriptionRequest(at_period_end=True, reason="too expensive"),
    )

    assert scheduled.status == SubscriptionStatus.ACTIVE
    assert scheduled.cancel_at_period_end is True
    assert scheduled.cancel_at == subscription.current_period_end
    assert scheduled.cancellation_reason == "too expensive"
    assert scheduled.canceled_at is None

    reactivated = service.reactivate_subscription(db_session, _scope(), subscription.id)

    assert reactivated.status == SubscriptionStatus.ACTIVE
    assert reactivated.cancel_at_period_end is False
    assert reactivated.cancel_at is None
    assert reactivated.cancellation_reason is None
    assert service.list_state_changes(db_session, _scope(), subscription.id) == []

    with pytest.raises(ValidationError, match="not scheduled for cancellation"):
        service.reactivate_subscription(db_session, _scope(), subscription.id)


def test_cancel_during_trial_keeps_trialing(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    plan = _plan(db_session, plans, trial_period_days=7)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, plan, customer)

    scheduled = service.cancel_subscription(db_session, _scope(), subscription.id)

    assert scheduled.status == SubscriptionStatus.TRIALING
    assert scheduled.cancel_at == subscription.trial_end


def test_immediate_cancel_is_terminal(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    plan = _plan(db_session, plans)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, plan, customer)
    clock.advance(days=2)

    canceled = service.cancel_subscription(
        db_session,
        _scope(),
        subscription.id,
        CancelSubscriptionRequest(at_period_end=False, reason="fraud"),
    )

    assert canceled.status == SubscriptionStatus.CANCELED
    assert canceled.canceled_at == clock.now
    assert canceled.cancel_at == clock.now
    assert canceled.cancel_at_period_end is False

    for operation in (
        lambda: service.reactivate_subscription(db_session, _scope(), subscription.id),
        lambda: service.update_subscription(db_session, _scope(), subscription.id, SubscriptionUpdate(quantity=2)),
        lambda: service.cancel_subscription(db_session, _scope(), subscription.id),
        lambda: service.pause_subscription(db_session, _scope(), subscription.id),
    ):
        with pytest.raises(ValidationError) as exc_info:
            operation()
        assert exc_info.value.code == "INVALID_STATE_TRANSITION"

    changes = service.list_state_changes(db_session, _scope(), subscription.id)
    assert [(row.from_status, row.to_status, row.reason) for row in changes] == [
        (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED, "fraud")
    ]


def test_change_plan_deferred_keeps_current_period(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    basic = _plan(db_session, plans)
    yearly = _plan(db_session, plans, billing_interval="year")
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, basic, customer, quantity=2)
    clock.advance(days=10)

    changed = service.change_plan(db_session, _scope(), subscription.id, ChangePlanRequest(plan_id=yearly.id))

    assert changed.plan_id == yearly.id
    assert changed.price_id == yearly.prices[0].id
    assert changed.quantity == 2
    assert changed.current_period_start == subscription.current_period_start
    assert changed.current_period_end == subscription.current_period_end
    assert changed.billing_cycle_anchor == subscription.billing_cycle_anchor
    assert service.list_subscriptions(db_session, _scope(), plan_id=yearly.id).data[0].id == subscription.id
    plan_changed = events.published_events[-1]
    assert plan_changed["event_type"] == "subscription.plan_changed"
    assert plan_changed["data"] == {"previous_plan_id": str(basic.id), "immediate": False}


def test_change_plan_immediate_restarts_period(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    basic = _plan(db_session, plans)
    weekly = _plan(db_session, plans, billing_interval="week", interval_count=2)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, basic, customer)
    clock.advance(days=10)

    changed = service.change_plan(
        db_session, _scope(), subscription.id, ChangePlanRequest(plan_id=weekly.id, immediate=True)
    )

    assert changed.current_period_start == clock.now
    assert changed.current_period_end == clock.now + timedelta(weeks=2)
    assert changed.billing_cycle_anchor == clock.now


def test_change_plan_requires_matching_currency_and_sellable_plan(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    basic = _plan(db_session, plans)
    naira_only = _plan(db_session, plans, currencies=("NGN",))
    retired = _plan(db_session, plans)
    plans.archive_plan(db_session, _scope(), retired.id)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, basic, customer)

    with pytest.raises(ValidationError, match="no price in currency USD"):
        service.change_plan(db_session, _scope(), subscription.id, ChangePlanRequest(plan_id=naira_only.id))
    with pytest.raises(ValidationError, match="not active"):
        service.change_plan(db_session, _scope(), subscription.id, ChangePlanRequest(plan_id=retired.id))

    unchanged = service.get_subscription(db_session, _scope(), subscription.id)
    assert unchanged.plan_id == basic.id


def test_pause_and_resume_restarts_period_without_credit(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    plan = _plan(db_session, plans)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, plan, customer)
    clock.advance(days=5)
    pause_until = clock.now + timedelta(days=20)

    paused = service.pause_subscription(
        db_session, _scope(), subscription.id, PauseSubscriptionRequest(pause_end=pause_until)
    )

    assert paused.status == SubscriptionStatus.PAUSED
    assert paused.pause_start == clock.now
    assert paused.pause_end == pause_until

    with pytest.raises(ValidationError):
        service.change_plan(db_session, _scope(), subscription.id, ChangePlanRequest(plan_id=plan.id))

    clock.advance(days=7)
    resumed = service.resume_subscription(db_session, _scope(), subscription.id)

    assert resumed.status == SubscriptionStatus.ACTIVE
    assert resumed.current_period_start == clock.now
    assert resumed.current_period_end == datetime(2024, 3, 12, tzinfo=timezone.utc)
    assert resumed.billing_cycle_anchor == clock.now
    assert resumed.pause_start is None and resumed.pause_end is None

    changes = service.list_state_changes(db_session, _scope(), subscription.id)
    assert [(row.from_status, row.to_status) for row in changes] == [
        (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED),
        (SubscriptionStatus.PAUSED, SubscriptionStatus.ACTIVE),
    ]


def test_pause_rejects_trialing_and_past_pause_end(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    customer = _customer(db_session, customers)
    trialing = _subscribe(db_session, service, _plan(db_session, plans, trial_period_days=7), customer)
    active = _subscribe(db_session, service, _plan(db_session, plans), customer)

    with pytest.raises(ValidationError) as exc_info:
        service.pause_subscription(db_session, _scope(), trialing.id)
    assert exc_info.value.code == "INVALID_STATE_TRANSITION"

    with pytest.raises(ValidationError, match="pause_end must be in the future"):
        service.pause_subscription(
            db_session, _scope(), active.id, PauseSubscriptionRequest(pause_end=START - timedelta(days=1))
        )

    with pytest.raises(ValidationError):
        service.resume_subscription(db_session, _scope(), active.id)


def test_update_applies_only_set_fields(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    plan = _plan(db_session, plans)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, plan, customer, metadata={"team": "core"})
    other = _subscribe(db_session, service, plan, customer, external_id="taken")
    clock.advance(hours=1)

    updated = service.update_subscription(
        db_session, _scope(), subscription.id, SubscriptionUpdate(quantity=5, external_id="sub-ext")
    )

    assert updated.quantity == 5
    assert updated.external_id == "sub-ext"
    assert updated.metadata == {"team": "core"}
    assert updated.updated_at == clock.now
    assert updated.current_period_end == subscription.current_period_end

    with pytest.raises(ConflictError):
        service.update_subscription(db_session, _scope(), subscription.id, SubscriptionUpdate(external_id="taken"))

    same = service.update_subscription(db_session, _scope(), other.id, SubscriptionUpdate(external_id="taken"))
    assert same.external_id == "taken"


def test_list_subscriptions_paginates_newest_first(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    plan = _plan(db_session, plans)
    trial_plan = _plan(db_session, plans, trial_period_days=14)
    customer = _customer(db_session, customers)
    created = []
    for index in range(3):
        clock.advance(minutes=1)
        created.append(_subscribe(db_session, service, trial_plan if index == 0 else plan, customer))

    first_page = service.list_subscriptions(db_session, _scope(), limit=2)

    assert [row.id for row in first_page.data] == [created[2].id, created[1].id]
    assert first_page.has_more is True

    second_page = service.list_subscriptions(db_session, _scope(), limit=2, starting_after=first_page.data[-1].id)

    assert [row.id for row in second_page.data] == [created[0].id]
    assert second_page.has_more is False

    trialing = service.list_subscriptions(db_session, _scope(), status=SubscriptionStatus.TRIALING)
    assert [row.id for row in trialing.data] == [created[0].id]
    assert len(service.list_subscriptions(db_session, _scope(), customer_id=customer.id, limit=500).data) == 3


def test_list_subscriptions_rejects_unknown_cursor(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    plan = _plan(db_session, plans)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, plan, customer)

    with pytest.raises(ValidationError):
        service.list_subscriptions(db_session, _scope("app-2"), starting_after=subscription.id)


def test_page_size_is_clamped(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    plan = _plan(db_session, plans)
    customer = _customer(db_session, customers)
    for _ in range(DEFAULT_PAGE_SIZE + 2):
        clock.advance(minutes=1)
        _subscribe(db_session, service, plan, customer)

    default_page = service.list_subscriptions(db_session, _scope())
    assert len(default_page.data) == DEFAULT_PAGE_SIZE
    assert default_page.has_more is True

    smallest = service.list_subscriptions(db_session, _scope(), limit=0)
    assert len(smallest.data) == 1
    assert smallest.has_more is True

    everything = service.list_subscriptions(db_session, _scope(), limit=MAX_PAGE_SIZE + 1)
    assert len(everything.data) == DEFAULT_PAGE_SIZE + 2
    assert everything.has_more is False


def test_clamp_limit_bounds() -> None:
    assert clamp_limit(None) == 10
    assert clamp_limit(0) == 1
    assert clamp_limit(-5) == 1
    assert clamp_limit(42) == 42
    assert clamp_limit(101) == 100
    assert clamp_limit(500) == 100


def test_resume_moves_scheduled_cancel_to_new_period_end(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    plan = _plan(db_session, plans)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, plan, customer)
    service.pause_subscription(db_session, _scope(), subscription.id)
    service.cancel_subscription(db_session, _scope(), subscription.id, CancelSubscriptionRequest(at_period_end=True))
    clock.advance(days=40)

    resumed = service.resume_subscription(db_session, _scope(), subscription.id)

    assert resumed.cancel_at_period_end is True
    assert resumed.current_period_start == datetime(2024, 3, 11, tzinfo=timezone.utc)
    assert resumed.current_period_end == datetime(2024, 4, 11, tzinfo=timezone.utc)
    assert resumed.cancel_at == resumed.current_period_end


def test_trial_activation_moves_scheduled_cancel_to_first_paid_period_end(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    plan = _plan(db_session, plans, trial_period_days=14)
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, plan, customer)
    scheduled = service.cancel_subscription(db_session, _scope(), subscription.id, CancelSubscriptionRequest())
    assert scheduled.cancel_at == subscription.trial_end
    clock.advance(days=14)

    activated = service.activate_trial(db_session, _scope(), subscription.id)

    assert activated.status == SubscriptionStatus.ACTIVE
    assert activated.cancel_at_period_end is True
    assert activated.cancel_at == activated.current_period_end
    assert activated.cancel_at > subscription.trial_end


def test_immediate_plan_change_moves_scheduled_cancel(
    db_session: Session,
    service: SubscriptionService,
    plans: PlanService,
    customers: CustomerService,
    clock: FixedClock,
) -> None:
    basic = _plan(db_session, plans)
    yearly = _plan(db_session, plans, billing_interval="year")
    customer = _customer(db_session, customers)
    subscription = _subscribe(db_session, service, basic, customer)
    service.cancel_subscription(db_session, _scope(), subscription.id, CancelSubscriptionRequest())
    clock.advance(days=5)

    changed = service.change_plan(
        db_session, _scope(), subscription.id, ChangePlanRequest(plan_id=yearly.id, immediate=True)
    )

    assert changed.current_period_end == datetime(2025, 2, 5, tzinfo=timezone.utc)
    assert changed.cancel_at == changed.current_period_end

    deferred = service.change_plan(db_session, _scope(), subscription.id, ChangePlanRequest(plan_id=basic.id))
    assert deferred.cancel_at == changed.current_period_end


def _failures(operation: str, code: str) -> float:
    value = REGISTRY.get_sample_value(
        "subscription_operation_failures_total", {"operation": operation, "code": code}
    )
    return value or 0.0


def test_create_and_change_plan_failures_are_counted(
    db_session: Session, service: SubscriptionService, plans: PlanService, customers: CustomerService
) -> None:
    plan = _plan(db_session, plans)
    naira_only = _plan(db_session, plans, currencies=("NGN",))
    customer = _customer(db_session, customers)
    other_tenant_customer = _customer(db_session, customers, scope=_scope("app-2"))
    subscription = _subscribe(db_session, service, plan, customer, external_id="sub-metric")

    missing_before = _failures("create", "NOT_FOUND")
    conflict_before = _failures("create", "CONFLICT")
    invalid_before = _failures("create", "VALIDATION_ERROR")
    change_before = _failures("change_plan", "VALIDATION_ERROR")
    update_before = _failures("update", "CONFLICT")

    with pytest.raises(NotFoundError):
        _subscribe(db_session, service, plan, other_tenant_customer)
    with pytest.raises(ConflictError):
        _subscribe(db_session, service, plan, customer, external_id="sub-metric")
    with pytest.raises(ValidationError):
        _subscribe(db_session, service, plan, customer, trial_end=START - timedelta(days=1))
    with pytest.raises(ValidationError):
        service.change_plan(db_session, _scope(), subscription.id, ChangePlanRequest(plan_id=naira_only.id))
    other = _subscribe(db_session, service, plan, customer)
    with pytest.raises(ConflictError):
        service.update_subscription(db_session, _scope(), other.id, SubscriptionUpdate(external_id="sub-metric"))

    assert _failures("create", "NOT_FOUND") == missing_before + 1
    assert _failures("create", "CONFLICT") == conflict_before + 1
    assert _failures("create", "VALIDATION_ERROR") == invalid_before + 1
    assert _failures("change_plan", "VALIDATION_ERROR") == change_before + 1
    assert _failures("update", "CONFLICT") == update_before + 1
