from __future__ import annotations

import time
from typing import Callable, Optional

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest
from starlette.routing import Match

from blogstack.core.settings import S

METRICS_ENABLED = S.metrics_enabled

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP requests resulting in server errors",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "In-progress HTTP requests",
    ["method", "path"],
)
LOGIN_SUCCESSES = Counter(
    "login_success_total",
    "Total successful logins",
)
LOGIN_FAILURES = Counter(
    "login_failure_total",
    "Total failed logins",
)
NEW_USERS = Counter(
    "new_users_total",
    "Total users signed up",
)
DOMAIN_EVENTS = Counter(
    "blog_domain_events_total",
    "Domain events by type",
    ["event"],
)
SCAN_FALLBACKS = Counter(
    "ddb_scan_fallbacks_total",
    "Lookups served by a table scan because an index was not ready",
    ["index"],
)
VERSION_CONFLICTS = Counter(
    "ddb_version_conflicts_total",
    "Versioned writes that lost a race and were retried",
    ["entity"],
)
COUNTER_DECREMENTS_SKIPPED = Counter(
    "user_counter_decrements_skipped_total",
    "Counter decrements skipped because the counter was already zero",
    ["counter"],
)
CASCADE_STEP_FAILURES = Counter(
    "user_delete_cascade_step_failures_total",
    "Failed steps while deleting a user",
    ["step"],
)
UPTIME_SECONDS = Gauge(
    "app_uptime_seconds",
    "Application uptime in seconds",
)
APP_INFO = Info(
    "app",
    "Application metadata",
)

_START_TIME = time.monotonic()


UNMATCHED_PATH = "<unmatched>"


def _route_path(request: Request) -> str:
    """Route template for the request, so ids in the URL never become label values."""
    route = request.scope.get("route")
    if route and getattr(route, "path", None):
        return route.path
    app = request.scope.get("app")
    for candidate in getattr(getattr(app, "router", None), "routes", []):
        match, _ = candidate.matches(request.scope)
        if match is not Match.NONE and getattr(candidate, "path", None):
            return candidate.path
    return UNMATCHED_PATH


def record_event(event: str) -> None:
    DOMAIN_EVENTS.labels(event=event).inc()


def record_login(success: bool) -> None:
    if success:
        LOGIN_SUCCESSES.inc()
    else:
        LOGIN_FAILURES.inc()


async def metrics_middleware(request: Request, call_next: Callable[[Request], Response]) -> Response:
    path = _route_path(request)
    method = request.method
    start = time.perf_counter()
    IN_PROGRESS.labels(method=method, path=path).inc()
    status_code = 500
    response: Optional[Response] = None
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        IN_PROGRESS.labels(method=method, path=path).dec()
        REQUEST_LATENCY.labels(method=method, path=path).observe(time.perf_counter() - start)
        REQUEST_COUNT.labels(method=method, path=path, status=str(status_code)).inc()
        if status_code >= 500:
            REQUEST_ERRORS.labels(method=method, path=path, status=str(status_code)).inc()


def set_app_info(name: str, version: str) -> None:
    APP_INFO.info({"name": name, "version": version})


def metrics_endpoint() -> Response:
    UPTIME_SECONDS.set(time.monotonic() - _START_TIME)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
