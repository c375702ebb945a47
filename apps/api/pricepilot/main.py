from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from pricepilot.api.routes import router as api_router
from pricepilot.context import get_correlation_id
from pricepilot.core.context import RequestContextMiddleware
from pricepilot.core.errors import PricingError
from pricepilot.core.events import InternalEvent, event_bus
from pricepilot.logging import configure_logging
from pricepilot.middleware.rate_limit import PricingMutationRateLimitMiddleware
from pricepilot.middleware.request_logging import RequestLoggingMiddleware
from pricepilot.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("pricepilot.lifecycle")
_subscriptions_registered = False

_pricing_event_types = [
    "pricing.bulk_action.applied",
    "pricing.bulk_action.reverted",
]


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name, "event_payload": event.payload})


def _on_pricing_event(event: InternalEvent) -> None:
    if not isinstance(event.payload, dict):
        return
    logger.info(
        event.name,
        extra={
            "bulk_action_id": event.payload.get("bulk_action_id"),
            "item_count": event.payload.get("item_count"),
            "failed_count": event.payload.get("failed_count"),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        for event_name in _pricing_event_types:
            event_bus.subscribe(event_name, _on_pricing_event)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


app = FastAPI(title="PricePilot API", version="0.1.0", lifespan=lifespan)
app.add_middleware(PricingMutationRateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestContextMiddleware)
app.include_router(api_router)


@app.exception_handler(PricingError)
async def pricing_error_handler(request: Request, exc: PricingError) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    if exc.status_code >= 500:
        logger.warning("pricing_error", extra={"status_code": exc.status_code, "error": exc.message})
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "code": exc.code,
            "details": jsonable_encoder(exc.details),
            "correlation_id": correlation_id,
        },
    )


setup_otel()

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
