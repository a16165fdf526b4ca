from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.errors import register_error_handlers
from app.core.events import LEAD_ASSIGNED, LEAD_CREATED, LEAD_DELETED, LEAD_UPDATED, InternalEvent, event_bus
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.rate_limit import MutationRateLimitMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import configure_tracing, correlation_request_hook


configure_logging()
logger = logging.getLogger("app.lifecycle")
domain_logger = logging.getLogger("app.events")


def _log_lead_event(event: InternalEvent) -> None:
    body = event.payload.get("payload") or {}
    domain_logger.info("domain_event", extra={"event_name": event.name, "lead_id": body.get("lead_id")})


def _log_startup(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def register_event_logging() -> None:
    # The bus ignores duplicate subscriptions, so repeated startups are harmless.
    event_bus.subscribe("system.started", _log_startup)
    for event_name in (LEAD_CREATED, LEAD_UPDATED, LEAD_ASSIGNED, LEAD_DELETED):
        event_bus.subscribe(event_name, _log_lead_event)


@asynccontextmanager
async def lifespan(app: FastAPI):
    register_event_logging()
    event_bus.publish("system.started", {"service": app.title})
    yield


def create_app() -> FastAPI:
    settings = get_settings()
    configure_tracing(settings)

    application = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    # Added last runs first: correlation id, then request logging, then the rate limiter.
    application.add_middleware(MutationRateLimitMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(CorrelationIdMiddleware)
    register_error_handlers(application)
    application.include_router(api_router)
    FastAPIInstrumentor().instrument_app(application, server_request_hook=correlation_request_hook())
    return application


app = create_app()
