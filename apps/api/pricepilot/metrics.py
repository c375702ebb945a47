from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

pricing_campaigns_applied_total = Counter(
    "pricing_campaigns_applied_total",
    "Total bulk pricing campaigns applied by type",
    ["action_type"],
)

pricing_campaigns_reverted_total = Counter(
    "pricing_campaigns_reverted_total",
    "Total bulk pricing campaigns fully reverted",
)

pricing_campaign_failures_total = Counter(
    "pricing_campaign_failures_total",
    "Total rejected or aborted campaign operations by reason",
    ["reason"],
)

pricing_item_mutations_total = Counter(
    "pricing_item_mutations_total",
    "Per-item price mutations by operation and outcome",
    ["operation", "outcome"],
)

shopify_request_duration_seconds = Histogram(
    "shopify_request_duration_seconds",
    "Shopify Admin API request duration in seconds",
    ["operation"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_campaign_applied(action_type: str) -> None:
    pricing_campaigns_applied_total.labels(action_type=action_type).inc()


def observe_campaign_reverted() -> None:
    pricing_campaigns_reverted_total.inc()


def observe_campaign_failure(reason: str) -> None:
    pricing_campaign_failures_total.labels(reason=reason).inc()


def observe_item_mutation(operation: str, outcome: str, count: int = 1) -> None:
    if count > 0:
        pricing_item_mutations_total.labels(operation=operation, outcome=outcome).inc(count)


def observe_shopify_request(operation: str, duration: float) -> None:
    shopify_request_duration_seconds.labels(operation=operation).observe(duration)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
