from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from ksiegai.api.routes import router as api_router
from ksiegai.context import get_correlation_id
from ksiegai.core.config import get_settings
from ksiegai.core.context import RequestContextMiddleware
from ksiegai.core.events import DomainEvent, event_bus
from ksiegai.integrations.ksef.errors import KsefError, KsefErrorType
from ksiegai.integrations.ksef.sync import get_sync_job
from ksiegai.logging import configure_logging
from ksiegai.middleware.correlation_id import CorrelationIdMiddleware
from ksiegai.middleware.rate_limit import MutationRateLimitMiddleware
from ksiegai.middleware.request_logging import RequestLoggingMiddleware
from ksiegai.otel import get_fastapi_server_request_hook, setup_otel
from ksiegai.platform.security.policies import DEFAULT_ROLE_PERMISSIONS, InMemoryPolicyBackend, set_policy_backend


configure_logging()
logger = logging.getLogger("ksiegai.lifecycle")
_subscriptions_registered = False

_logged_event_patterns = ("invoice.*", "ledger.entry.*", "period.*", "cash.*", "ksef.invoice.*")


def _on_system_started(event: DomainEvent) -> None:
    logger.info("system.started", extra={"status": event.payload.get("service")})


def _on_domain_event(event: DomainEvent) -> None:
    logger.info(
        "domain_event",
        extra={
            "reason": event.name,
            "business_profile_id": event.business_profile_id,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        for pattern in _logged_event_patterns:
            event_bus.subscribe(pattern, _on_domain_event)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})

    settings = get_settings()
    sync_job = get_sync_job() if settings.ksef_sync_enabled else None
    if sync_job is not None:
        sync_job.start()
    try:
        yield
    finally:
        if sync_job is not None:
            sync_job.stop(timeout=5.0)


app = FastAPI(title="KsiegaI API", version="0.1.0", lifespan=lifespan)
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    body = {"detail": exc.detail, "correlation_id": correlation_id}
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(KsefError)
async def ksef_error_handler(request: Request, exc: KsefError) -> JSONResponse:
    status_code = 429 if exc.error_type == KsefErrorType.RATE_LIMIT else 502
    logger.warning(
        "ksef.request_failed",
        extra={"path": request.url.path, "error_type": exc.error_type.value, "status_code": status_code},
    )
    headers = {"Retry-After": str(int(exc.retry_after))} if exc.retry_after else None
    body = {"detail": exc.to_dict(), "correlation_id": get_correlation_id()}
    return JSONResponse(status_code=status_code, content=body, headers=headers)


settings = get_settings()
set_policy_backend(InMemoryPolicyBackend(DEFAULT_ROLE_PERMISSIONS, default_allow=settings.authz_default_allow))

if settings.otel_enabled:
    setup_otel("api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
