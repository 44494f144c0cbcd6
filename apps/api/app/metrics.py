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

insight_cycles_total = Counter(
    "insight_cycles_total",
    "Insight compute cycles by outcome",
    ["status"],
)

insight_cycle_duration_seconds = Histogram(
    "insight_cycle_duration_seconds",
    "Insight compute cycle duration in seconds",
)

insights_created_total = Counter(
    "insights_created_total",
    "Insights created by kind",
    ["kind"],
)

insights_resolved_total = Counter(
    "insights_resolved_total",
    "Insights resolved by compute runs or operators",
)

action_transitions_total = Counter(
    "action_transitions_total",
    "Action state transitions by kind and resulting status",
    ["kind", "status"],
)

webhook_delivery_attempts_total = Counter(
    "webhook_delivery_attempts_total",
    "Webhook delivery attempts by outcome",
    ["outcome"],
)

webhook_delivery_duration_seconds = Histogram(
    "webhook_delivery_duration_seconds",
    "Webhook delivery attempt duration in seconds",
)

webhook_endpoints_suspended_total = Counter(
    "webhook_endpoints_suspended_total",
    "Webhook endpoints deactivated after repeated failures",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_insight_cycle(status: str, duration: float) -> None:
    insight_cycles_total.labels(status=status).inc()
    insight_cycle_duration_seconds.observe(duration)


def observe_insight_created(kind: str) -> None:
    insights_created_total.labels(kind=kind).inc()


def observe_insights_resolved(count: int = 1) -> None:
    if count > 0:
        insights_resolved_total.inc(count)


def observe_action_transition(kind: str, status: str) -> None:
    action_transitions_total.labels(kind=kind, status=status).inc()


def observe_webhook_attempt(outcome: str, duration: float) -> None:
    webhook_delivery_attempts_total.labels(outcome=outcome).inc()
    webhook_delivery_duration_seconds.observe(duration)


def observe_webhook_endpoint_suspended() -> None:
    webhook_endpoints_suspended_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
