from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from xbs.business.customers.models import BillingCustomer
from xbs.platform.tenancy.context import TenantScope
from xbs.platform.tenancy.repository import BaseRepository, Page


class CustomerRepository(BaseRepository[BillingCustomer]):
    model = BillingCustomer

    def exists(self, session: Session, scope: TenantScope, customer_id: uuid.UUID) -> bool:
        stmt = self.apply_scope_query(
            select(BillingCustomer.id).where(
                BillingCustomer.id == customer_id,
                BillingCustomer.deleted_at.is_(None),
            ),
            scope,
        )
        return session.scalar(stmt) is not None

    def find_by_external_id(
        self,
        session: Session,
        scope: TenantScope,
        external_id: str,
        *,
        include_deleted: bool = False,
    ) -> BillingCustomer | None:
        # a soft-deleted customer may share its external id with a live one; the live row wins
        stmt = self.apply_scope_query(select(BillingCustomer).where(BillingCustomer.external_id == external_id), scope)
        if not include_deleted:
            stmt = stmt.where(BillingCustomer.deleted_at.is_(None))
        stmt = stmt.order_by(BillingCustomer.deleted_at.is_not(None), BillingCustomer.created_at.desc())
        return session.scalar(stmt.limit(1))

    def external_id_taken(
        self,
        session: Session,
        scope: TenantScope,
        external_id: str,
        *,
        exclude_id: uuid.UUID | None = None,
    ) -> bool:
        stmt = self.apply_scope_query(
            select(BillingCustomer.id).where(
                BillingCustomer.external_id == external_id,
                BillingCustomer.deleted_at.is_(None),
            ),
            scope,
        )
        if exclude_id is not None:
            stmt = stmt.where(BillingCustomer.id != exclude_id)
        return session.scalar(stmt.limit(1)) is not None

    def list_customers(
        self,
        session: Session,
        scope: TenantScope,
        *,
        email: str | None = None,
        include_deleted: bool = False,
        limit: int | None = None,
        starting_after: uuid.UUID | None = None,
    ) -> Page[BillingCustomer]:
        stmt = select(BillingCustomer)
        if not include_deleted:
            stmt = stmt.where(BillingCustomer.deleted_at.is_(None))
        if email:
            stmt = stmt.where(BillingCustomer.email.icontains(email, autoescape=True))
        return self.paginate(session, scope, stmt, limit=limit, starting_after=starting_after)
