"""Correlation ID middleware for request tracking."""

import re
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from structlog.contextvars import bind_contextvars, clear_contextvars

HEADER = "X-Request-ID"

# Client-supplied ids are echoed into logs, so only short, plain tokens pass
_CLIENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{7,63}$")


def is_acceptable_id(value: str | None) -> bool:
    """Whether a client-supplied request id can be reused as-is."""
    return bool(value) and bool(_CLIENT_ID_PATTERN.match(value or ""))


class CorrelationMiddleware(BaseHTTPMiddleware):
    """
    Middleware to handle request correlation IDs.

    Reuses a well-formed ``X-Request-ID`` header or generates a UUID, then
    exposes it on ``request.state``, in the structlog context for every
    record logged while handling the request (admission and status events
    included) and on the response.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        """
        Process the request/response cycle.

        Args:
        ----
            request: The incoming request
            call_next: The next handler in the middleware chain

        Returns:
        -------
            The response from downstream handlers
        """
        clear_contextvars()

        supplied = request.headers.get(HEADER)
        correlation_id = supplied if is_acceptable_id(supplied) else str(uuid.uuid4())

        bind_contextvars(correlation_id=correlation_id, path=request.url.path)
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[HEADER] = correlation_id
        return response
