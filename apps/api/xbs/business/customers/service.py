from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from xbs.business.customers.models import BillingCustomer, utcnow
from xbs.business.customers.repository import CustomerRepository
from xbs.business.customers.schemas import CustomerCreate, CustomerPage, CustomerRead, CustomerUpdate
from xbs.core.errors import ConflictError, NotFoundError, ValidationError
from xbs.platform.tenancy.context import TenantScope


logger = logging.getLogger("xbs.customers")

_NON_NULLABLE_FIELDS = ("email", "external_id", "metadata")


@dataclass(slots=True)
class CustomerService:
    customer_repository: CustomerRepository = CustomerRepository()
    clock: Callable[[], datetime] = utcnow

    def create_customer(self, session: Session, scope: TenantScope, payload: CustomerCreate) -> CustomerRead:
        external_id = payload.external_id or str(uuid.uuid4())
        if self.customer_repository.external_id_taken(session, scope, external_id):
            raise ConflictError(f"Customer with external_id '{external_id}' already exists")

        now = self.clock()
        customer = BillingCustomer(
            tenant_id=scope.tenant_id,
            test_mode=scope.test_mode,
            external_id=external_id,
            email=payload.email,
            name=payload.name,
            phone=payload.phone,
            country=payload.country,
            tax_id=payload.tax_id,
            metadata_=dict(payload.metadata),
            created_at=now,
            updated_at=now,
        )
        session.add(customer)
        session.commit()
        session.refresh(customer)

        self._log("created", customer, scope)
        return self._to_customer_read(customer)

    def get_customer(
        self,
        session: Session,
        scope: TenantScope,
        customer_id: uuid.UUID,
        *,
        include_deleted: bool = False,
    ) -> CustomerRead:
        return self._to_customer_read(self._get_customer(session, scope, customer_id, include_deleted=include_deleted))

    def get_customer_by_external_id(
        self,
        session: Session,
        scope: TenantScope,
        external_id: str,
        *,
        include_deleted: bool = False,
    ) -> CustomerRead:
        customer = self.customer_repository.find_by_external_id(
            session, scope, external_id, include_deleted=include_deleted
        )
        if customer is None:
            raise NotFoundError("Customer not found")
        return self._to_customer_read(customer)

    def customer_exists(self, session: Session, scope: TenantScope, customer_id: uuid.UUID) -> bool:
        return self.customer_repository.exists(session, scope, customer_id)

    def list_customers(
        self,
        session: Session,
        scope: TenantScope,
        *,
        email: str | None = None,
        include_deleted: bool = False,
        limit: int | None = None,
        starting_after: uuid.UUID | None = None,
    ) -> CustomerPage:
        page = self.customer_repository.list_customers(
            session,
            scope,
            email=email,
            include_deleted=include_deleted,
            limit=limit,
            starting_after=starting_after,
        )
        return CustomerPage(data=[self._to_customer_read(row) for row in page.data], has_more=page.has_more)

    def update_customer(
        self,
        session: Session,
        scope: TenantScope,
        customer_id: uuid.UUID,
        payload: CustomerUpdate,
    ) -> CustomerRead:
        customer = self._get_customer(session, scope, customer_id)

        changes = payload.model_dump(exclude_unset=True)
        for name in _NON_NULLABLE_FIELDS:
            if name in changes and changes[name] is None:
                raise ValidationError(f"{name} cannot be null")
        external_id = changes.get("external_id")
        if external_id and self.customer_repository.external_id_taken(
            session, scope, external_id, exclude_id=customer.id
        ):
            raise ConflictError(f"Customer with external_id '{external_id}' already exists")

        if "metadata" in changes:
            customer.metadata_ = dict(changes.pop("metadata"))
        for name, value in changes.items():
            setattr(customer, name, value)
        customer.updated_at = self.clock()
        session.add(customer)
        session.commit()
        session.refresh(customer)

        self._log("updated", customer, scope)
        return self._to_customer_read(customer)

    def merge_metadata(
        self,
        session: Session,
        scope: TenantScope,
        customer_id: uuid.UUID,
        metadata: dict[str, Any],
    ) -> CustomerRead:
        """Shallow merge: top-level keys in ``metadata`` replace existing ones, others are kept."""
        customer = self._get_customer(session, scope, customer_id)
        customer.metadata_ = {**(customer.metadata_ or {}), **metadata}
        customer.updated_at = self.clock()
        session.add(customer)
        session.commit()
        session.refresh(customer)

        self._log("metadata_merged", customer, scope)
        return self._to_customer_read(customer)

    def delete_customer(self, session: Session, scope: TenantScope, customer_id: uuid.UUID) -> CustomerRead:
        customer = self._get_customer(session, scope, customer_id)
        now = self.clock()
        customer.deleted_at = now
        customer.updated_at = now
        session.add(customer)
        session.commit()
        session.refresh(customer)

        self._log("deleted", customer, scope)
        return self._to_customer_read(customer)

    def restore_customer(self, session: Session, scope: TenantScope, customer_id: uuid.UUID) -> CustomerRead:
        customer = self.customer_repository.get(session, scope, customer_id)
        if customer is None or customer.deleted_at is None:
            raise NotFoundError("Deleted customer not found")
        if self.customer_repository.external_id_taken(session, scope, customer.external_id, exclude_id=customer.id):
            raise ConflictError(f"Customer with external_id '{customer.external_id}' already exists")

        customer.deleted_at = None
        customer.updated_at = self.clock()
        session.add(customer)
        session.commit()
        session.refresh(customer)

        self._log("restored", customer, scope)
        return self._to_customer_read(customer)

    def _get_customer(
        self,
        session: Session,
        scope: TenantScope,
        customer_id: uuid.UUID,
        *,
        include_deleted: bool = False,
    ) -> BillingCustomer:
        customer = self.customer_repository.get(session, scope, customer_id)
        if customer is None or (customer.deleted_at is not None and not include_deleted):
            raise NotFoundError("Customer not found")
        return customer

    @staticmethod
    def _log(action: str, customer: BillingCustomer, scope: TenantScope) -> None:
        logger.info(
            f"customer.{action}",
            extra={"customer_id": str(customer.id), "tenant_id": scope.tenant_id, "test_mode": scope.test_mode},
        )

    @staticmethod
    def _to_customer_read(customer: BillingCustomer) -> CustomerRead:
        return CustomerRead(
            id=customer.id,
            tenant_id=customer.tenant_id,
            test_mode=customer.test_mode,
            external_id=customer.external_id,
            email=customer.email,
            name=customer.name,
            phone=customer.phone,
            country=customer.country,
            tax_id=customer.tax_id,
            metadata=customer.metadata_ or {},
            created_at=customer.created_at,
            updated_at=customer.updated_at,
            deleted_at=customer.deleted_at,
        )


customer_service = CustomerService()
