from __future__ import annotations

import uuid

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from xbs.api.deps import get_tenant_scope
from xbs.api.schemas import DataResponse
from xbs.business.catalog.schemas import (
    PlanCloneRequest,
    PlanCreate,
    PlanPage,
    PlanRead,
    PlanStatus,
    PlanUpdate,
    PriceCalculationRead,
    PriceCalculationRequest,
)
from xbs.business.catalog.service import plan_service
from xbs.core.database import get_db
from xbs.platform.tenancy.context import TenantScope


router = APIRouter(prefix="/plans", tags=["plans"])


@router.post("", response_model=DataResponse[PlanRead], status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: PlanCreate,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[PlanRead]:
    return DataResponse(data=plan_service.create_plan(db, scope, payload))


@router.get("", response_model=PlanPage)
def list_plans(
    limit: int | None = Query(default=None),
    starting_after: uuid.UUID | None = Query(default=None),
    status_filter: PlanStatus | None = Query(default=None, alias="status"),
    include_archived: bool = Query(default=False),
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> PlanPage:
    return plan_service.list_plans(
        db,
        scope,
        limit=limit,
        starting_after=starting_after,
        status=status_filter,
        include_archived=include_archived,
    )


@router.get("/external/{external_id}", response_model=DataResponse[PlanRead])
def get_plan_by_external_id(
    external_id: str,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[PlanRead]:
    return DataResponse(data=plan_service.get_plan_by_external_id(db, scope, external_id))


@router.get("/{plan_id}", response_model=DataResponse[PlanRead])
def get_plan(
    plan_id: uuid.UUID,
    include_archived: bool = Query(default=True),
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[PlanRead]:
    return DataResponse(data=plan_service.get_plan(db, scope, plan_id, include_archived=include_archived))


@router.patch("/{plan_id}", response_model=DataResponse[PlanRead])
def update_plan(
    plan_id: uuid.UUID,
    payload: PlanUpdate,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[PlanRead]:
    return DataResponse(data=plan_service.update_plan(db, scope, plan_id, payload))


@router.post("/{plan_id}/archive", response_model=DataResponse[PlanRead])
def archive_plan(
    plan_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[PlanRead]:
    return DataResponse(data=plan_service.archive_plan(db, scope, plan_id))


@router.post("/{plan_id}/unarchive", response_model=DataResponse[PlanRead])
def unarchive_plan(
    plan_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[PlanRead]:
    return DataResponse(data=plan_service.unarchive_plan(db, scope, plan_id))


@router.post("/{plan_id}/clone", response_model=DataResponse[PlanRead], status_code=status.HTTP_201_CREATED)
def clone_plan(
    plan_id: uuid.UUID,
    payload: PlanCloneRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[PlanRead]:
    return DataResponse(data=plan_service.clone_plan(db, scope, plan_id, payload))


@router.post("/{plan_id}/calculate", response_model=DataResponse[PriceCalculationRead])
def calculate_plan_price(
    plan_id: uuid.UUID,
    payload: PriceCalculationRequest,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[PriceCalculationRead]:
    return DataResponse(data=plan_service.calculate_plan_price(db, scope, plan_id, payload))
