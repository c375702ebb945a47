from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from pricepilot.context import get_correlation_id, get_shop_domain
from pricepilot.core.auth import bearer_token, decode_session_token, shop_from_claims
from pricepilot.core.config import get_settings


@dataclass
class _BucketState:
    tokens: float
    last_refill: float


class _TokenBucketLimiter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _BucketState] = {}

    def take(self, key: str, route_group: str, capacity: int, window_seconds: int) -> tuple[bool, int]:
        if capacity <= 0:
            return False, window_seconds

        now = time.monotonic()
        refill_rate = capacity / float(window_seconds)
        bucket_key = (key, route_group)

        with self._lock:
            current = self._buckets.get(bucket_key)
            if current is None:
                current = _BucketState(tokens=float(capacity), last_refill=now)
                self._buckets[bucket_key] = current

            elapsed = max(0.0, now - current.last_refill)
            current.tokens = min(float(capacity), current.tokens + (elapsed * refill_rate))
            current.last_refill = now

            if current.tokens < 1.0:
                retry_after = max(1, math.ceil((1.0 - current.tokens) / refill_rate))
                return False, retry_after

            current.tokens -= 1.0
            return True, 0

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = _TokenBucketLimiter()


class PricingMutationRateLimitMiddleware(BaseHTTPMiddleware):
    """Token bucket per shop (or user) over every price-mutating endpoint."""

    mutating_methods = {"POST", "PATCH", "PUT"}
    guarded_prefixes = ("/api/pricing", "/api/catalog", "/api/shopify")

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled:
            return await call_next(request)

        path = request.url.path
        if not path.startswith(self.guarded_prefixes) or request.method.upper() not in self.mutating_methods:
            return await call_next(request)

        allowed, retry_after = _limiter.take(
            key=_resolve_bucket_key(request),
            route_group=_resolve_route_group(path),
            capacity=settings.rate_limit_pricing_mutations_per_minute,
            window_seconds=60,
        )
        if allowed:
            return await call_next(request)

        correlation_id = (
            get_correlation_id()
            or getattr(request.state, "correlation_id", None)
            or request.headers.get("x-correlation-id")
            or str(uuid.uuid4())
        )
        response = JSONResponse(
            status_code=429,
            content={
                "error": "Too many requests",
                "code": "RATE_LIMITED",
                "details": None,
                "correlation_id": correlation_id,
            },
        )
        response.headers["Retry-After"] = str(retry_after)
        response.headers["X-Correlation-Id"] = correlation_id
        return response


def _resolve_route_group(path: str) -> str:
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        return "api"
    return parts[1]


def _resolve_bucket_key(request: Request) -> str:
    shop_domain = get_shop_domain()
    if shop_domain:
        return f"shop:{shop_domain}"

    payload = decode_session_token(bearer_token(request))
    if payload is None:
        return "anonymous"

    token_shop = shop_from_claims(payload)
    if token_shop:
        return f"shop:{token_shop}"
    subject = payload.get("sub")
    if subject is None:
        return "anonymous"
    return f"user:{subject}"


def reset_rate_limiter() -> None:
    _limiter.clear()
