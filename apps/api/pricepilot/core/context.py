import uuid
from dataclasses import dataclass

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from pricepilot.context import reset_correlation_id, reset_shop_domain, set_correlation_id, set_shop_domain
from pricepilot.shops.service import normalize_shop_domain


@dataclass
class RequestContext:
    correlation_id: str
    shop_domain: str | None
    user_id: str | None = None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds the correlation id and the calling shop for the lifetime of a request.

    Both values land in ``request.state.context``, in the contextvars read by
    logging, audit and events, and on the active span. The correlation id is
    echoed back in ``x-correlation-id``.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        raw_shop = request.headers.get("x-shop-domain") or ""
        shop_domain = normalize_shop_domain(raw_shop) if raw_shop.strip() else None

        request.state.correlation_id = correlation_id
        request.state.context = RequestContext(correlation_id=correlation_id, shop_domain=shop_domain)

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
            if shop_domain:
                span.set_attribute("shop_domain", shop_domain)

        correlation_token = set_correlation_id(correlation_id)
        shop_token = set_shop_domain(shop_domain)
        try:
            response = await call_next(request)
        finally:
            reset_shop_domain(shop_token)
            reset_correlation_id(correlation_token)

        response.headers["x-correlation-id"] = correlation_id
        return response
