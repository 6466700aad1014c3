from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from xbs.core.errors import ValidationError
from xbs.platform.tenancy.context import TenantScope

ModelT = TypeVar("ModelT")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_PAGE_SIZE
    return min(max(1, limit), MAX_PAGE_SIZE)


@dataclass(slots=True)
class Page(Generic[ModelT]):
    data: list[ModelT]
    has_more: bool


class BaseRepository(Generic[ModelT]):
    """Tenant + mode scoped access to one mapped model.

    The model must expose ``id``, ``tenant_id``, ``test_mode`` and ``created_at``
    columns; ``external_id`` is required for the external id lookups.
    """

    model: Any = None

    def apply_scope_query(self, query: Select[Any], scope: TenantScope) -> Select[Any]:
        return query.where(
            and_(
                self.model.tenant_id == scope.tenant_id,
                self.model.test_mode == scope.test_mode,
            )
        )

    def get(
        self,
        session: Session,
        scope: TenantScope,
        record_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> ModelT | None:
        stmt = self.apply_scope_query(select(self.model).where(self.model.id == record_id), scope)
        if for_update:
            stmt = stmt.with_for_update()
        return session.scalar(stmt)

    def get_by_external_id(self, session: Session, scope: TenantScope, external_id: str) -> ModelT | None:
        stmt = self.apply_scope_query(select(self.model).where(self.model.external_id == external_id), scope)
        return session.scalar(stmt)

    def external_id_taken(
        self,
        session: Session,
        scope: TenantScope,
        external_id: str,
        *,
        exclude_id: uuid.UUID | None = None,
    ) -> bool:
        stmt = self.apply_scope_query(select(self.model.id).where(self.model.external_id == external_id), scope)
        if exclude_id is not None:
            stmt = stmt.where(self.model.id != exclude_id)
        return session.scalar(stmt.limit(1)) is not None

    def paginate(
        self,
        session: Session,
        scope: TenantScope,
        stmt: Select[Any],
        *,
        limit: int | None,
        starting_after: uuid.UUID | None,
    ) -> Page[ModelT]:
        """Newest first; ``starting_after`` is the id of the last row of the previous page."""
        page_size = clamp_limit(limit)
        stmt = self.apply_scope_query(stmt, scope)

        if starting_after is not None:
            cursor = session.execute(
                self.apply_scope_query(
                    select(self.model.created_at, self.model.id).where(self.model.id == starting_after),
                    scope,
                )
            ).first()
            if cursor is None:
                raise ValidationError("starting_after does not reference a known record")
            cursor_created_at, cursor_id = cursor
            stmt = stmt.where(
                or_(
                    self.model.created_at < cursor_created_at,
                    and_(self.model.created_at == cursor_created_at, self.model.id < cursor_id),
                )
            )

        rows = list(
            session.scalars(
                stmt.order_by(self.model.created_at.desc(), self.model.id.desc()).limit(page_size + 1)
            ).all()
        )
        return Page(data=rows[:page_size], has_more=len(rows) > page_size)
