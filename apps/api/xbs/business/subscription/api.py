from __future__ import annotations

import uuid

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from xbs.api.deps import get_tenant_scope
from xbs.api.schemas import DataResponse
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
from xbs.business.subscription.service import subscription_service
from xbs.business.subscription.state import SubscriptionStatus
from xbs.core.database import get_db
from xbs.platform.tenancy.context import TenantScope


router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post("", response_model=DataResponse[SubscriptionRead], status_code=status.HTTP_201_CREATED)
def create_subscription(
    payload: SubscriptionCreate,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[SubscriptionRead]:
    return DataResponse(data=subscription_service.create_subscription(db, scope, payload))


@router.get("", response_model=SubscriptionPage)
def list_subscriptions(
    customer_id: uuid.UUID | None = Query(default=None),
    plan_id: uuid.UUID | None = Query(default=None),
    status_filter: SubscriptionStatus | None = Query(default=None, alias="status"),
    limit: int | None = Query(default=None),
    starting_after: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> SubscriptionPage:
    return subscription_service.list_subscriptions(
        db,
        scope,
        customer_id=customer_id,
        plan_id=plan_id,
        status=status_filter,
        limit=limit,
        starting_after=starting_after,
    )


@router.get("/external/{external_id}", response_model=DataResponse[SubscriptionRead])
def get_subscription_by_external_id(
    external_id: str,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[SubscriptionRead]:
    return DataResponse(data=subscription_service.get_subscription_by_external_id(db, scope, external_id))


@router.get("/{subscription_id}", response_model=DataResponse[SubscriptionRead])
def get_subscription(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[SubscriptionRead]:
    return DataResponse(data=subscription_service.get_subscription(db, scope, subscription_id))


@router.patch("/{subscription_id}", response_model=DataResponse[SubscriptionRead])
def update_subscription(
    subscription_id: uuid.UUID,
    payload: SubscriptionUpdate,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[SubscriptionRead]:
    return DataResponse(data=subscription_service.update_subscription(db, scope, subscription_id, payload))


@router.post("/{subscription_id}/change-plan", response_model=DataResponse[SubscriptionRead])
def change_plan(
    subscription_id: uuid.UUID,
    payload: ChangePlanRequest,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[SubscriptionRead]:
    return DataResponse(data=subscription_service.change_plan(db, scope, subscription_id, payload))


@router.post("/{subscription_id}/cancel", response_model=DataResponse[SubscriptionRead])
def cancel_subscription(
    subscription_id: uuid.UUID,
    payload: CancelSubscriptionRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[SubscriptionRead]:
    return DataResponse(data=subscription_service.cancel_subscription(db, scope, subscription_id, payload))


@router.post("/{subscription_id}/reactivate", response_model=DataResponse[SubscriptionRead])
def reactivate_subscription(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[SubscriptionRead]:
    return DataResponse(data=subscription_service.reactivate_subscription(db, scope, subscription_id))


@router.post("/{subscription_id}/pause", response_model=DataResponse[SubscriptionRead])
def pause_subscription(
    subscription_id: uuid.UUID,
    payload: PauseSubscriptionRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[SubscriptionRead]:
    return DataResponse(data=subscription_service.pause_subscription(db, scope, subscription_id, payload))


@router.post("/{subscription_id}/resume", response_model=DataResponse[SubscriptionRead])
def resume_subscription(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[SubscriptionRead]:
    return DataResponse(data=subscription_service.resume_subscription(db, scope, subscription_id))


@router.post("/{subscription_id}/activate-trial", response_model=DataResponse[SubscriptionRead])
def activate_trial(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[SubscriptionRead]:
    return DataResponse(data=subscription_service.activate_trial(db, scope, subscription_id))


@router.get("/{subscription_id}/state-changes", response_model=DataResponse[list[SubscriptionStateChangeRead]])
def list_state_changes(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: TenantScope = Depends(get_tenant_scope),
) -> DataResponse[list[SubscriptionStateChangeRead]]:
    return DataResponse(data=subscription_service.list_state_changes(db, scope, subscription_id))
