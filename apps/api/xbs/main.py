from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from xbs.api.routes import router as api_router
from xbs.core.config import get_settings
from xbs.core.database import Database
from xbs.core.errors import BillingError
from xbs.core.events import InternalEvent, event_bus
from xbs.logging import configure_logging
from xbs.middleware.correlation_id import CorrelationIdMiddleware
from xbs.middleware.request_logging import RequestLoggingMiddleware
from xbs.otel import get_fastapi_server_request_hook, setup_otel


settings = get_settings()
configure_logging(settings.app_name, sql_echo=settings.database_echo)
logger = logging.getLogger("xbs.lifecycle")


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    current = get_settings()
    database = Database(current.database_url, echo=current.database_echo, pool_pre_ping=True)
    app.state.database = database
    event_bus.subscribe("system.started", _on_system_started)
    event_bus.publish("system.started", {"service": current.app_name})
    try:
        yield
    finally:
        database.dispose()
        logger.info("system_event", extra={"event_name": "system.stopped"})


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    logger.info(
        "request.rejected",
        extra={"error": f"{exc.code}: {exc.message}", "path": request.url.path, "status_code": exc.status_code},
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


app = FastAPI(title=settings.app_name, version="0.1.0", debug=settings.app_debug, lifespan=lifespan)
app.add_exception_handler(BillingError, billing_error_handler)  # type: ignore[arg-type]
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel(settings.app_name, True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
