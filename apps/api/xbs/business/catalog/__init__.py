from xbs.business.catalog.api import router
from xbs.business.catalog.models import BillingPlan, BillingPlanPrice
from xbs.business.catalog.pricing import calculate_price, resolve_price, validate_price_definition
from xbs.business.catalog.schemas import (
    PlanCreate,
    PlanPage,
    PlanRead,
    PlanUpdate,
    PriceCreate,
    PriceRead,
    PriceTier,
)
from xbs.business.catalog.service import PlanService, plan_service

__all__ = [
    "router",
    "BillingPlan",
    "BillingPlanPrice",
    "PlanCreate",
    "PlanUpdate",
    "PlanRead",
    "PlanPage",
    "PriceCreate",
    "PriceRead",
    "PriceTier",
    "resolve_price",
    "calculate_price",
    "validate_price_definition",
    "PlanService",
    "plan_service",
]
