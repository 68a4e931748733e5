"""HTTP request metrics."""
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

http_request_duration_seconds = Histogram(
    "payment_http_request_duration_seconds",
    "Time spent serving HTTP requests",
    labelnames=["method", "route"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

http_responses_total = Counter(
    "payment_http_responses_total",
    "HTTP responses by route and status class",
    labelnames=["method", "route", "status_class"],
)

http_server_errors_total = Counter(
    "payment_http_server_errors_total",
    "Requests that ended in a 5xx response or an unhandled exception",
    labelnames=["method", "route", "reason"],
)

UNMATCHED_ROUTE = "unmatched"


def route_label(request: Request) -> str:
    """
    Route template such as ``/v1/payments/{payment_id}``; raw paths would explode cardinality.

    Rebuilt from the request path: a route matched inside an included
    router may not carry the ``/v1`` prefix.
    """
    if request.scope.get("route") is None:
        return UNMATCHED_ROUTE
    names = {str(value): name for name, value in request.scope.get("path_params", {}).items()}
    segments = request.scope["path"].split("/")
    return "/".join(f"{{{names[s]}}}" if s in names else s for s in segments)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Times every request and counts responses. The ``/metrics`` mount is skipped."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            http_server_errors_total.labels(request.method, route_label(request), type(exc).__name__).inc()
            raise
        finally:
            http_request_duration_seconds.labels(request.method, route_label(request)).observe(
                time.perf_counter() - started
            )

        route = route_label(request)
        http_responses_total.labels(request.method, route, f"{response.status_code // 100}xx").inc()
        if response.status_code >= 500:
            http_server_errors_total.labels(request.method, route, str(response.status_code)).inc()

        return response
