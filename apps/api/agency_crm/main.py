from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.exc import SQLAlchemyError

from agency_crm import events
from agency_crm.api.routes import router as api_router
from agency_crm.core.config import get_settings
from agency_crm.core.database import SessionLocal
from agency_crm.crm.seed import ensure_default_owner
from agency_crm.logging import configure_logging
from agency_crm.middleware.correlation_id import CorrelationIdMiddleware
from agency_crm.middleware.request_logging import RequestLoggingMiddleware
from agency_crm.otel import configure_tracing, server_request_hook


configure_logging()
logger = logging.getLogger("app.lifecycle")


def _log_lifecycle_event(envelope: events.EventEnvelope) -> None:
    logger.info(envelope["event_type"], extra={"status": envelope["payload"].get("service")})


def _provision_default_owner() -> None:
    session = SessionLocal()
    try:
        ensure_default_owner(session)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning("crm.default_owner.provision_failed", extra={"error": str(exc)})
    finally:
        session.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    unsubscribe = events.bus.subscribe("system.*", _log_lifecycle_event)
    if get_settings().provision_default_owner_on_startup:
        _provision_default_owner()
    events.publish(events.build_envelope("system.started", None, {"service": "api"}))
    try:
        yield
    finally:
        events.publish(events.build_envelope("system.stopping", None, {"service": "api"}))
        unsubscribe()


app = FastAPI(title="Agency CRM API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

configure_tracing(get_settings().otel_enabled)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=server_request_hook)
