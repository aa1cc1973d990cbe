"""Prometheus metrics for the HTTP surface, the no-show job and the analytics."""

import re
import time
from collections.abc import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware



REQUEST_COUNT = Counter(
    "branchqueue_http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_class"]
)

REQUEST_DURATION = Histogram(
    "branchqueue_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"]
)

NO_SHOW_MARKED = Counter(
    "branchqueue_no_show_marked_total",
    "Appointments automatically marked as no-show"
)

NO_SHOW_ERRORS = Counter(
    "branchqueue_no_show_errors_total",
    "No-show job failures",
    ["stage"]
)

NO_SHOW_SKIPPED = Counter(
    "branchqueue_no_show_ticks_skipped_total",
    "No-show ticks skipped because a previous tick was still running"
)

NO_SHOW_TICK_DURATION = Histogram(
    "branchqueue_no_show_tick_duration_seconds",
    "Duration of a no-show tick in seconds"
)

QUEUE_SAMPLES_REJECTED = Counter(
    "branchqueue_queue_samples_rejected_total",
    "Queue timing samples excluded from wait-time analytics"
)


def endpoint_label(path: str) -> str:
    """Collapse numeric path segments so labels stay low-cardinality."""
    return re.sub(r"/\d+", "/{id}", path)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Count requests and time them per normalized endpoint."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        endpoint = endpoint_label(request.url.path)
        start_time = time.perf_counter()
        status_class = "5xx"

        try:
            response = await call_next(request)
            status_class = f"{str(response.status_code)[0]}xx"
            return response
        finally:
            REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_class=status_class).inc()
            REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(time.perf_counter() - start_time)


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
