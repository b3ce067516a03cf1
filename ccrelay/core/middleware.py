"""Middleware for request logging, metrics collection and CORS"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ccrelay.core.metrics import REQUEST_COUNT, REQUEST_DURATION, ACTIVE_REQUESTS
from ccrelay.core.logging import get_logger

logger = get_logger()

# Endpoints reported under their own label; everything else is "unmatched"
KNOWN_ENDPOINTS = {"/v1/messages", "/metrics"}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Max-Age": "86400",
}


class RequestMiddleware(BaseHTTPMiddleware):
    """Tag requests with an id, answer CORS preflights, log and measure requests"""

    def __init__(self, app: ASGIApp, cors_enabled: bool = True):
        super().__init__(app)
        self.cors_enabled = cors_enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and collect metrics"""
        method = request.method
        path = request.url.path
        endpoint = path if path in KNOWN_ENDPOINTS else "unmatched"

        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id

        if self.cors_enabled and method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)

        # Skip metrics endpoint itself
        if path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.labels(endpoint=endpoint).inc()
        start_time = time.time()

        try:
            response = await call_next(request)
            duration = time.time() - start_time
            status_code = response.status_code
            upstream = getattr(request.state, "upstream", "-")

            REQUEST_COUNT.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code
            ).inc()

            REQUEST_DURATION.labels(
                method=method,
                endpoint=endpoint
            ).observe(duration)

            logger.info(
                f"{method} {path} - upstream={upstream} status={status_code} "
                f"duration={duration:.3f}s request_id={request_id}"
            )

            response.headers["X-Request-ID"] = request_id
            if self.cors_enabled:
                response.headers["Access-Control-Allow-Origin"] = "*"
            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"{method} {path} - Error: {type(e).__name__}: {str(e)} "
                f"duration={duration:.3f}s request_id={request_id}"
            )
            raise

        finally:
            ACTIVE_REQUESTS.labels(endpoint=endpoint).dec()
