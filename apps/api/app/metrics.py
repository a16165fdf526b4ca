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

lead_assignments_appended_total = Counter(
    "lead_assignments_appended_total",
    "Total rows appended to the lead assignment ledger",
    ["mode"],
)

bulk_operation_rows_total = Counter(
    "bulk_operation_rows_total",
    "Rows touched by bulk lead operations by outcome",
    ["operation", "outcome"],
)

bulk_operation_duration_seconds = Histogram(
    "bulk_operation_duration_seconds",
    "Bulk lead operation duration in seconds",
    ["operation"],
)

scope_denials_total = Counter(
    "scope_denials_total",
    "Requests rejected by role or visibility scope",
    ["role", "action"],
)

visibility_resolutions_total = Counter(
    "visibility_resolutions_total",
    "Visibility scope resolutions by role",
    ["role"],
)

dashboard_build_duration_seconds = Histogram(
    "dashboard_build_duration_seconds",
    "Dashboard summary build duration in seconds",
    ["role"],
)


_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")
_ROUTE_PARAM = re.compile(r"\{[^{}]+\}")


def resolve_http_path_label(request: Request) -> str:
    """Route template with every parameter collapsed to ``{id}``; raw paths fall back to digit masking."""

    route = request.scope.get("route")
    template = getattr(route, "path_format", None) or getattr(route, "path", None)
    if isinstance(template, str) and template:
        return _ROUTE_PARAM.sub("{id}", template)
    return _NUMERIC_SEGMENT.sub("/{id}", request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_assignments_appended(mode: str, count: int = 1) -> None:
    if count > 0:
        lead_assignments_appended_total.labels(mode=mode).inc(count)


def observe_bulk_operation(operation: str, outcomes: dict[str, int], duration: float) -> None:
    for outcome, count in outcomes.items():
        if count > 0:
            bulk_operation_rows_total.labels(operation=operation, outcome=outcome).inc(count)
    bulk_operation_duration_seconds.labels(operation=operation).observe(duration)


def observe_scope_denial(role: str, action: str) -> None:
    scope_denials_total.labels(role=role, action=action).inc()


def observe_visibility_resolution(role: str) -> None:
    visibility_resolutions_total.labels(role=role).inc()


def observe_dashboard_build(role: str, duration: float) -> None:
    dashboard_build_duration_seconds.labels(role=role).observe(duration)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
