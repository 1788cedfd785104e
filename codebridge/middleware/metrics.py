"""Per-request API metrics."""

import time

import structlog

from ..services.metrics import APIRequestMetrics, MetricsService, metrics_service

logger = structlog.get_logger(__name__)

# Requests that matched no route share one bucket; the endpoint table
# holds route templates only.
UNMATCHED_ENDPOINT = "<unmatched>"


def endpoint_label(scope: dict) -> str:
    """Route template the router matched for this request."""
    route = scope.get("route")
    path = getattr(route, "path", None)
    return path or UNMATCHED_ENDPOINT


class MetricsMiddleware:
    """ASGI middleware recording one APIRequestMetrics per HTTP request.

    WebSocket traffic is not counted; run statistics come from the
    execution session manager instead.
    """

    def __init__(self, app, metrics: MetricsService = None):
        self.app = app
        self.metrics = metrics or metrics_service

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            try:
                self.metrics.record_api_request(
                    APIRequestMetrics(
                        endpoint=endpoint_label(scope),
                        method=scope.get("method", "GET"),
                        status_code=status_code,
                        response_time_ms=(time.perf_counter() - started) * 1000,
                    )
                )
            except Exception as e:
                logger.error("Failed to record API metrics", error=str(e))
