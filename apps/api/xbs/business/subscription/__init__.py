from xbs.business.subscription.api import router
from xbs.business.subscription.models import Subscription, SubscriptionStateChange
from xbs.business.subscription.periods import period_end
from xbs.business.subscription.schemas import (
    CancelSubscriptionRequest,
    ChangePlanRequest,
    PauseSubscriptionRequest,
    SubscriptionCreate,
    SubscriptionPage,
    SubscriptionRead,
    SubscriptionStateChangeRead,
    SubscriptionUpdate,
)
from xbs.business.subscription.service import SubscriptionService, subscription_service
from xbs.business.subscription.state import ALLOWED_OPERATIONS, LifecycleOperation, SubscriptionStatus

__all__ = [
    "router",
    "Subscription",
    "SubscriptionStateChange",
    "SubscriptionStatus",
    "LifecycleOperation",
    "ALLOWED_OPERATIONS",
    "period_end",
    "SubscriptionCreate",
    "SubscriptionUpdate",
    "ChangePlanRequest",
    "CancelSubscriptionRequest",
    "PauseSubscriptionRequest",
    "SubscriptionRead",
    "SubscriptionPage",
    "SubscriptionStateChangeRead",
    "SubscriptionService",
    "subscription_service",
]
