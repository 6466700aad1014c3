from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from xbs.business.subscription.models import Subscription, SubscriptionStateChange
from xbs.business.subscription.state import SubscriptionStatus
from xbs.core.errors import ConflictError
from xbs.platform.tenancy.context import TenantScope
from xbs.platform.tenancy.repository import BaseRepository, Page


class SubscriptionStore(BaseRepository[Subscription]):
    """Owns subscription rows. Callers read with ``for_update=True`` and finish with ``save``
    so a lifecycle operation is one locked read-modify-write transaction."""

    model = Subscription

    def add(self, session: Session, subscription: Subscription) -> Subscription:
        session.add(subscription)
        return subscription

    def save(self, session: Session, subscription: Subscription) -> Subscription:
        session.add(subscription)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            if "external_id" in str(exc.orig):
                raise ConflictError(
                    f"Subscription with external_id '{subscription.external_id}' already exists"
                ) from exc
            raise
        session.refresh(subscription)
        return subscription

    def record_state_change(
        self,
        session: Session,
        subscription: Subscription,
        from_status: str,
        to_status: str,
        *,
        reason: str | None,
        changed_at: datetime,
    ) -> None:
        if from_status == to_status:
            return
        session.add(
            SubscriptionStateChange(
                subscription_id=subscription.id,
                from_status=from_status,
                to_status=to_status,
                reason=reason,
                changed_at=changed_at,
            )
        )

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
    ) -> Page[Subscription]:
        stmt = select(Subscription)
        if customer_id is not None:
            stmt = stmt.where(Subscription.customer_id == customer_id)
        if plan_id is not None:
            stmt = stmt.where(Subscription.plan_id == plan_id)
        if status is not None:
            stmt = stmt.where(Subscription.status == SubscriptionStatus(status).value)
        return self.paginate(session, scope, stmt, limit=limit, starting_after=starting_after)

    def list_state_changes(self, session: Session, subscription_id: uuid.UUID) -> list[SubscriptionStateChange]:
        return list(
            session.scalars(
                select(SubscriptionStateChange)
                .where(SubscriptionStateChange.subscription_id == subscription_id)
                .order_by(SubscriptionStateChange.changed_at.asc())
            ).all()
        )

    def find_expired_trials(self, session: Session, now: datetime, *, limit: int) -> list[tuple[uuid.UUID, str, bool]]:
        """Trialing subscriptions past ``trial_end`` across every tenant and mode."""
        rows = session.execute(
            select(Subscription.id, Subscription.tenant_id, Subscription.test_mode)
            .where(
                Subscription.status == SubscriptionStatus.TRIALING.value,
                Subscription.trial_end.is_not(None),
                Subscription.trial_end <= now,
            )
            .order_by(Subscription.trial_end.asc())
            .limit(limit)
        ).all()
        return [(row.id, row.tenant_id, row.test_mode) for row in rows]
