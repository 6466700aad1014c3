from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from xbs.api.deps import get_tenant_scope
from xbs.api.schemas import DataResponse
from xbs.business.customers.schemas import (
    CustomerCreate,
    CustomerMetadataMerge,
    CustomerPage,
    CustomerRead,
    CustomerUpdate,
)
from xbs.business.customers.service import customer_service
from xbs.core.database import get_db
from xbs.platform.tenancy.context import TenantScope


router = APIRouter(prefix="/customers", tags=["customers"])


@router.post("", response_model=DataResponse[CustomerRead], status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerCreate,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[CustomerRead]:
    return DataResponse(data=customer_service.create_customer(db, scope, payload))


@router.get("", response_model=CustomerPage)
def list_customers(
    email: str | None = Query(default=None),
    include_deleted: bool = Query(default=False),
    limit: int | None = Query(default=None),
    starting_after: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> CustomerPage:
    return customer_service.list_customers(
        db,
        scope,
        email=email,
        include_deleted=include_deleted,
        limit=limit,
        starting_after=starting_after,
    )


@router.get("/external/{external_id}", response_model=DataResponse[CustomerRead])
def get_customer_by_external_id(
    external_id: str,
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[CustomerRead]:
    return DataResponse(
        data=customer_service.get_customer_by_external_id(db, scope, external_id, include_deleted=include_deleted)
    )


@router.get("/{customer_id}", response_model=DataResponse[CustomerRead])
def get_customer(
    customer_id: uuid.UUID,
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[CustomerRead]:
    return DataResponse(data=customer_service.get_customer(db, scope, customer_id, include_deleted=include_deleted))


@router.patch("/{customer_id}", response_model=DataResponse[CustomerRead])
@router.put("/{customer_id}", response_model=DataResponse[CustomerRead])
def update_customer(
    customer_id: uuid.UUID,
    payload: CustomerUpdate,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[CustomerRead]:
    return DataResponse(data=customer_service.update_customer(db, scope, customer_id, payload))


@router.delete("/{customer_id}", response_model=DataResponse[CustomerRead])
def delete_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[CustomerRead]:
    return DataResponse(data=customer_service.delete_customer(db, scope, customer_id))


@router.post("/{customer_id}/restore", response_model=DataResponse[CustomerRead])
def restore_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[CustomerRead]:
    return DataResponse(data=customer_service.restore_customer(db, scope, customer_id))


@router.post("/{customer_id}/metadata", response_model=DataResponse[CustomerRead])
def merge_customer_metadata(
    customer_id: uuid.UUID,
    payload: CustomerMetadataMerge,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[CustomerRead]:
    return DataResponse(data=customer_service.merge_metadata(db, scope, customer_id, payload.metadata))
