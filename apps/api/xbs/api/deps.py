from __future__ import annotations

from fastapi import Header, Request

from xbs.context import get_correlation_id
from xbs.core.errors import ValidationError
from xbs.platform.tenancy.context import TenantScope


def get_tenant_scope(
    request: Request,
    application_id: str | None = Header(default=None, alias="x-application-id"),
    test_mode: bool = Header(default=False, alias="x-test-mode"),
) -> TenantScope:
    if not application_id or not application_id.strip():
        raise ValidationError("x-application-id header is required", code="MISSING_APPLICATION_ID")
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    return TenantScope(tenant_id=application_id.strip(), test_mode=test_mode, correlation_id=correlation_id)
