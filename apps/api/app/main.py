from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.events import InternalEvent, event_bus
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import instrument_app, setup_otel
from app.platform.webhooks.service import drain_inline_dispatches, register_webhook_forwarding


configure_logging()
logger = logging.getLogger("app.lifecycle")


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    event_bus.subscribe("system.started", _on_system_started)
    register_webhook_forwarding(event_bus)
    settings = get_settings()
    logger.info(
        "webhook_forwarding_registered",
        extra={"status": settings.webhook_dispatch_mode},
    )
    event_bus.publish("system.started", {"service": "api"})
    yield
    await asyncio.to_thread(
        drain_inline_dispatches,
        settings.webhook_timeout_seconds * max(1, settings.webhook_max_attempts),
    )


app = FastAPI(title="Pulseops API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel("pulseops-api", True)

instrument_app(app)
