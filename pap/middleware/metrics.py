"""Request metrics middleware for Prometheus monitoring."""

import re
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from pap.core.events import REQUESTS_TOTAL, RESPONSES_TOTAL
from pap.core.logging import get_logger

logger = get_logger()

# Hashes in status URLs would give every submission its own label value
_HASH_SEGMENT = re.compile(r"/[a-f0-9]{64}(?=/|$)")


def metric_path(path: str) -> str:
    """Collapse per-package path segments into a fixed label."""
    return _HASH_SEGMENT.sub("/{hash}", path.rstrip("/")) or "/"


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect request/response metrics.

    Records:
    - Total requests by method and path template
    - Total responses by status code
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        """
        Process the request/response cycle and record metrics.

        Args:
        ----
            request: The incoming request
            call_next: The next handler in the middleware chain

        Returns:
        -------
            The response from downstream handlers
        """
        REQUESTS_TOTAL.labels(
            method=request.method,
            path=metric_path(request.url.path),
        ).inc()

        try:
            start_time = time.time()
            response = await call_next(request)
            duration = time.time() - start_time

            RESPONSES_TOTAL.labels(status_code=str(response.status_code)).inc()

            logger.info(
                "request_processed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration=duration,
            )

            return response

        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
            )
            raise
