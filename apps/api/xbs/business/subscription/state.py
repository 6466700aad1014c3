"""Subscription statuses and the operations each status accepts.

``ALLOWED_OPERATIONS`` is the single table the lifecycle service consults;
adding a status means adding one row here.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from xbs.core.errors import ValidationError

if TYPE_CHECKING:
    from xbs.business.subscription.schemas import SubscriptionUpdate


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"


class LifecycleOperation(str, Enum):
    UPDATE = "update"
    CHANGE_PLAN = "change_plan"
    CANCEL = "cancel"
    REACTIVATE = "reactivate"
    PAUSE = "pause"
    RESUME = "resume"
    ACTIVATE_TRIAL = "activate_trial"


_Op = LifecycleOperation

# past_due, unpaid and incomplete are entered and left by the payment collaborator;
# here they only accept the operations that do not depend on billing state.
ALLOWED_OPERATIONS: dict[SubscriptionStatus, frozenset[LifecycleOperation]] = {
    SubscriptionStatus.TRIALING: frozenset({_Op.UPDATE, _Op.CHANGE_PLAN, _Op.CANCEL, _Op.REACTIVATE, _Op.ACTIVATE_TRIAL}),
    SubscriptionStatus.ACTIVE: frozenset({_Op.UPDATE, _Op.CHANGE_PLAN, _Op.CANCEL, _Op.REACTIVATE, _Op.PAUSE}),
    SubscriptionStatus.PAST_DUE: frozenset({_Op.UPDATE, _Op.CANCEL, _Op.REACTIVATE}),
    SubscriptionStatus.PAUSED: frozenset({_Op.UPDATE, _Op.CANCEL, _Op.REACTIVATE, _Op.RESUME}),
    SubscriptionStatus.CANCELED: frozenset(),
    SubscriptionStatus.UNPAID: frozenset({_Op.UPDATE, _Op.CANCEL, _Op.REACTIVATE}),
    SubscriptionStatus.INCOMPLETE: frozenset({_Op.UPDATE, _Op.CANCEL, _Op.REACTIVATE}),
}


def is_operation_allowed(status: SubscriptionStatus | str, operation: LifecycleOperation) -> bool:
    return operation in ALLOWED_OPERATIONS[SubscriptionStatus(status)]


def assert_operation_allowed(status: SubscriptionStatus | str, operation: LifecycleOperation) -> None:
    current = SubscriptionStatus(status)
    if operation not in ALLOWED_OPERATIONS[current]:
        raise ValidationError(
            f"Cannot {operation.value.replace('_', ' ')} a subscription with status '{current.value}'",
            code="INVALID_STATE_TRANSITION",
            context={"status": current.value, "operation": operation.value},
        )


def apply_subscription_patch(items: list[dict[str, Any]], patch: SubscriptionUpdate) -> dict[str, Any]:
    """Column changes produced by ``patch``; fields the caller did not set are left out.

    Quantity is rewritten on the first item in place of its previous value.
    """
    fields = patch.model_fields_set
    changes: dict[str, Any] = {}
    if "external_id" in fields:
        changes["external_id"] = patch.external_id
    if "metadata" in fields and patch.metadata is not None:
        changes["metadata_"] = dict(patch.metadata)
    if "quantity" in fields and patch.quantity is not None:
        if not items:
            raise ValidationError("Subscription has no items")
        changes["items"] = [{**items[0], "quantity": patch.quantity}, *[dict(item) for item in items[1:]]]
    return changes
