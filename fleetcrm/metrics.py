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

crm_primary_contact_demotions_total = Counter(
    "crm_primary_contact_demotions_total",
    "Contacts demoted from primary because another contact of the company became primary",
)

crm_opportunities_closed_total = Counter(
    "crm_opportunities_closed_total",
    "Sales opportunities moved to a terminal stage",
    ["stage"],
)

crm_dashboard_duration_seconds = Histogram(
    "crm_dashboard_duration_seconds",
    "Dashboard aggregation duration in seconds",
    ["role"],
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


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


def observe_primary_contact_demotions(count: int) -> None:
    if count > 0:
        crm_primary_contact_demotions_total.inc(count)


def observe_opportunity_closed(stage: str) -> None:
    crm_opportunities_closed_total.labels(stage=stage).inc()


def observe_dashboard(role: str, duration: float) -> None:
    crm_dashboard_duration_seconds.labels(role=role).observe(duration)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
