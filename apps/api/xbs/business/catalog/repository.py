from __future__ import annotations

from xbs.business.catalog.models import BillingPlan
from xbs.platform.tenancy.repository import BaseRepository


class PlanRepository(BaseRepository[BillingPlan]):
    model = BillingPlan
