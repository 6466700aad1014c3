from fastapi import APIRouter, HTTPException, status
from fastapi.responses import Response

from xbs.business.catalog.api import router as plans_router
from xbs.business.customers.api import router as customers_router
from xbs.business.subscription.api import router as subscriptions_router
from xbs.core.config import get_settings
from xbs.metrics import generate_metrics_payload, metrics_content_type

API_PREFIX = "/v1"

v1_router = APIRouter(prefix=API_PREFIX)
v1_router.include_router(subscriptions_router)
v1_router.include_router(plans_router)
v1_router.include_router(customers_router)

router = APIRouter()
router.include_router(v1_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics() -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
