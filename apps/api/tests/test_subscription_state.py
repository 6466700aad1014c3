from __future__ import annotations

import pytest

from xbs.business.subscription.schemas import SubscriptionUpdate
from xbs.business.subscription.state import (
    ALLOWED_OPERATIONS,
    LifecycleOperation,
    SubscriptionStatus,
    apply_subscription_patch,
    assert_operation_allowed,
    is_operation_allowed,
)
from xbs.core.errors import ValidationError


ITEM = {"plan_id": "8f9c2f7e-0c1b-4a7e-9d6a-1f1f1f1f1f1f", "price_id": "1b1b1b1b-2c2c-4d4d-8e8e-3f3f3f3f3f3f", "quantity": 1}


def test_every_status_has_an_entry() -> None:
    assert set(ALLOWED_OPERATIONS) == set(SubscriptionStatus)


def test_canceled_is_terminal() -> None:
    for operation in LifecycleOperation:
        assert not is_operation_allowed(SubscriptionStatus.CANCELED, operation)


@pytest.mark.parametrize(
    ("status", "operation", "allowed"),
    [
        ("trialing", LifecycleOperation.ACTIVATE_TRIAL, True),
        ("active", LifecycleOperation.ACTIVATE_TRIAL, False),
        ("active", LifecycleOperation.PAUSE, True),
        ("trialing", LifecycleOperation.PAUSE, False),
        ("paused", LifecycleOperation.RESUME, True),
        ("active", LifecycleOperation.RESUME, False),
        ("paused", LifecycleOperation.CHANGE_PLAN, False),
        ("past_due", LifecycleOperation.CANCEL, True),
        ("unpaid", LifecycleOperation.CHANGE_PLAN, False),
        ("incomplete", LifecycleOperation.UPDATE, True),
    ],
)
def test_allowed_operations(status: str, operation: LifecycleOperation, allowed: bool) -> None:
    assert is_operation_allowed(status, operation) is allowed


def test_disallowed_operation_raises_invalid_transition() -> None:
    with pytest.raises(ValidationError) as exc_info:
        assert_operation_allowed("canceled", LifecycleOperation.REACTIVATE)

    assert exc_info.value.code == "INVALID_STATE_TRANSITION"
    assert exc_info.value.context == {"status": "canceled", "operation": "reactivate"}
    assert "status 'canceled'" in exc_info.value.message


def test_patch_only_touches_fields_that_were_set() -> None:
    changes = apply_subscription_patch([ITEM], SubscriptionUpdate(metadata={"seats": "5"}))

    assert changes == {"metadata_": {"seats": "5"}}


def test_patch_quantity_rewrites_first_item_without_mutating_input() -> None:
    items = [dict(ITEM)]

    changes = apply_subscription_patch(items, SubscriptionUpdate(quantity=4, external_id="sub-ext-1"))

    assert changes["items"] == [{**ITEM, "quantity": 4}]
    assert changes["external_id"] == "sub-ext-1"
    assert items[0]["quantity"] == 1


def test_patch_can_clear_external_id() -> None:
    changes = apply_subscription_patch([ITEM], SubscriptionUpdate(external_id=None))

    assert changes == {"external_id": None}


def test_patch_quantity_without_items_is_rejected() -> None:
    with pytest.raises(ValidationError):
        apply_subscription_patch([], SubscriptionUpdate(quantity=2))
