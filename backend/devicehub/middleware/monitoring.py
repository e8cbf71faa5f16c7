"""Prometheus metrics and the request monitoring middleware"""
import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

from devicehub.utils.logger import logger

SLOW_REQUEST_SECONDS = 1.0


# ===== Prometheus Metrics =====

# Requests, labelled by route template (``/devices/{device_id}``) to keep cardinality bounded
http_requests_total = Counter(
    "devicehub_http_requests_total",
    "HTTP requests by route and status",
    ["method", "route", "status"]
)

http_request_duration_seconds = Histogram(
    "devicehub_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "route"]
)

http_errors_total = Counter(
    "devicehub_http_errors_total",
    "HTTP responses with status >= 400",
    ["method", "route", "status"]
)

# Auth
authentication_failures_total = Counter(
    "devicehub_authentication_failures_total",
    "Rejected credentials or tokens",
    ["reason"]  # expired, invalid, revoked, bad_credentials
)

# Rate limiting
rate_limit_rejections_total = Counter(
    "devicehub_rate_limit_rejections_total",
    "Requests rejected by the fixed-window rate limiter",
    ["endpoint"]
)

rate_limit_degraded_total = Counter(
    "devicehub_rate_limit_degraded_total",
    "Requests allowed without a rate-limit decision because the cache was unreachable",
    ["endpoint"]
)

# Export jobs
export_jobs_total = Counter(
    "devicehub_export_jobs_total",
    "Export jobs by lifecycle event",
    ["event"]  # submitted, completed, failed
)

export_job_duration_seconds = Histogram(
    "devicehub_export_job_duration_seconds",
    "Time from job submission to terminal state",
    buckets=(1, 5, 30, 60, 300, 600, 1800, 3600)
)


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MonitoringMiddleware(BaseHTTPMiddleware):
    """Times every request, counts it by route and tags the response with a request id"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception as e:
            route = _route_label(request)
            http_errors_total.labels(method=request.method, route=route, status=500).inc()
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                extra={"request_id": request_id, "endpoint": route, "error": str(e)},
                exc_info=True,
            )
            raise

        duration = time.perf_counter() - started
        route = _route_label(request)
        status = response.status_code

        http_requests_total.labels(method=request.method, route=route, status=status).inc()
        http_request_duration_seconds.labels(method=request.method, route=route).observe(duration)
        if status >= 400:
            http_errors_total.labels(method=request.method, route=route, status=status).inc()

        if duration > SLOW_REQUEST_SECONDS:
            logger.warning(
                f"Slow request: {request.method} {route} took {duration:.2f}s",
                extra={"request_id": request_id, "endpoint": route},
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response


def record_auth_failure(reason: str):
    authentication_failures_total.labels(reason=reason).inc()


def record_rate_limit_rejection(endpoint: str):
    rate_limit_rejections_total.labels(endpoint=endpoint).inc()


def record_rate_limit_degraded(endpoint: str):
    rate_limit_degraded_total.labels(endpoint=endpoint).inc()


def record_export_job(event: str, duration_seconds: Optional[float] = None):
    """Count an export job lifecycle event and, for terminal events, its total duration"""
    export_jobs_total.labels(event=event).inc()
    if duration_seconds is not None:
        export_job_duration_seconds.observe(duration_seconds)
