"""Security middleware for the Code Bridge service."""

# Standard library imports
import time
from typing import Callable, Dict, Tuple

# Third-party imports
import structlog
from fastapi import Request, HTTPException

# Local application imports
from ..config import settings
from ..models.errors import ErrorType
from ..utils.error_handlers import error_json
from ..utils.request_helpers import get_client_ip

logger = structlog.get_logger(__name__)


class RateLimiter:
    """Fixed-window request counter per client key."""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        # key -> (window start, count)
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str, now: float = None) -> Tuple[bool, int, float]:
        """Count one request.

        Returns:
            (allowed, remaining, seconds until the window resets)
        """
        now = time.time() if now is None else now
        start, count = self._windows.get(key, (now, 0))
        if now - start >= self.window_seconds:
            start, count = now, 0
        count += 1
        self._windows[key] = (start, count)

        if len(self._windows) > 10000:
            self._evict(now)

        remaining = max(self.max_requests - count, 0)
        reset_in = max(self.window_seconds - (now - start), 0)
        return count <= self.max_requests, remaining, reset_in

    def _evict(self, now: float) -> None:
        expired = [
            key
            for key, (start, _) in self._windows.items()
            if now - start >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]


class SecurityMiddleware:
    """Security headers, content-type checks and per-IP rate limiting."""

    def __init__(self, app: Callable, rate_limiter: RateLimiter = None):
        self.app = app
        self.excluded_paths = {
            "/health",
            "/docs",
            "/redoc",
            "/openapi.json",
        }
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.rate_limit_requests, settings.rate_limit_window_seconds
        )

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        """Process request through the security checks."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        extra_headers: Dict[bytes, bytes] = {}

        def add_security_headers(message):
            if message["type"] == "http.response.start":
                headers = dict(message.get("headers", []))
                path = scope.get("path", "")

                security_headers = {
                    b"x-content-type-options": b"nosniff",
                    b"x-frame-options": b"DENY",
                    b"x-xss-protection": b"0",
                    b"x-dns-prefetch-control": b"off",
                    b"strict-transport-security": b"max-age=31536000; includeSubDomains",
                    b"referrer-policy": b"no-referrer",
                    b"cross-origin-opener-policy": b"same-origin",
                }

                if path in ["/docs", "/redoc", "/openapi.json"]:
                    security_headers[b"content-security-policy"] = (
                        b"default-src 'self'; "
                        b"script-src 'self' 'unsafe-inline' cdn.jsdelivr.net; "
                        b"style-src 'self' 'unsafe-inline' cdn.jsdelivr.net; "
                        b"img-src 'self' data: fastapi.tiangolo.com; "
                        b"frame-src 'self';"
                    )
                else:
                    security_headers[b"content-security-policy"] = b"default-src 'self'"

                headers.update(security_headers)
                headers.update(extra_headers)
                message["headers"] = list(headers.items())

        async def send_wrapper(message):
            add_security_headers(message)
            await send(message)

        try:
            self._check_rate_limit(request, extra_headers)
            self._validate_request(request)
        except HTTPException as e:
            error_type = (
                ErrorType.RATE_LIMITED if e.status_code == 429 else ErrorType.VALIDATION
            )
            response = error_json(e.status_code, e.detail, error_type, headers=e.headers)
            await response(scope, receive, send_wrapper)
            return

        await self.app(scope, receive, send_wrapper)

    def _check_rate_limit(self, request: Request, extra_headers: Dict[bytes, bytes]):
        if not settings.rate_limit_enabled:
            return
        if request.url.path in self.excluded_paths or request.method == "OPTIONS":
            return

        client_ip = get_client_ip(request)
        allowed, remaining, reset_in = self.rate_limiter.hit(client_ip)
        extra_headers[b"x-ratelimit-limit"] = str(self.rate_limiter.max_requests).encode()
        extra_headers[b"x-ratelimit-remaining"] = str(remaining).encode()
        extra_headers[b"x-ratelimit-reset"] = str(int(reset_in)).encode()

        if not allowed:
            logger.warning(
                "Rate limit exceeded",
                client_ip=client_ip,
                path=request.url.path,
                limit=self.rate_limiter.max_requests,
            )
            raise HTTPException(
                status_code=429,
                detail="Too many requests, please try again later.",
                headers={"Retry-After": str(max(int(reset_in), 1))},
            )

    def _validate_request(self, request: Request):
        """Request bodies must be JSON."""
        if request.method in ["POST", "PUT", "PATCH"]:
            content_type = request.headers.get("content-type", "")
            if "application/json" not in content_type:
                raise HTTPException(
                    status_code=415, detail=f"Unsupported content type: {content_type}"
                )


class RequestLoggingMiddleware:
    """Simplified request logging middleware."""

    def __init__(self, app: Callable):
        self.app = app
        self.health_logged = False

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        """Log request information."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        start_time = time.time()

        # Skip repeated health check logging
        skip_logging = request.url.path == "/health" and self.health_logged
        if request.url.path == "/health" and not self.health_logged:
            self.health_logged = True

        response_status = None

        async def send_wrapper(message):
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            if not skip_logging:
                logger.error(
                    "Request failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                )
            raise
        finally:
            if not skip_logging:
                log_kwargs = dict(
                    method=request.method,
                    path=request.url.path,
                    status=response_status,
                    duration_ms=round((time.time() - start_time) * 1000, 2),
                )
                if response_status and response_status >= 500:
                    logger.error("Request failed", **log_kwargs)
                elif response_status and response_status >= 400:
                    logger.warning("Request error", **log_kwargs)
                else:
                    logger.debug("Request processed", **log_kwargs)
