from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from tabsearch.app.settings import settings
from tabsearch.search.context import REPLACED, SearchUpdate

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
SEARCH_COUNT = Counter(
    "tabsearch_searches_total",
    "Searches by mode and final status",
    ["mode", "status"],
)
SEARCH_LATENCY = Histogram(
    "tabsearch_search_duration_seconds",
    "Time until a search returned its first result set",
    ["mode"],
)
SEMANTIC_REPLACEMENTS = Counter(
    "tabsearch_semantic_replacements_total",
    "Provisional lexical results replaced by semantic results",
)


async def metrics_middleware(request: Request, call_next):
    if not settings.metrics_enabled:
        return await call_next(request)
    path = request.url.path
    if path == "/metrics":
        return await call_next(request)
    start = time.monotonic()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        duration = time.monotonic() - start
        REQUEST_COUNT.labels(request.method, path, str(status)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(duration)


def record_search(mode: str, status: str, duration: float) -> None:
    if not settings.metrics_enabled:
        return
    SEARCH_COUNT.labels(mode, status).inc()
    SEARCH_LATENCY.labels(mode).observe(duration)


def count_replacements(update: SearchUpdate) -> None:
    """Search listener that counts semantic replacements."""
    if settings.metrics_enabled and update.kind == REPLACED:
        SEMANTIC_REPLACEMENTS.inc()


def metrics_response() -> Response:
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
