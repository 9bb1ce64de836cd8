"""Error handling middleware."""

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.status import (
    HTTP_404_NOT_FOUND,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)
from starlette.types import ASGIApp

from pap.core.errors import LedgerBusy, RecordNotFound
from pap.core.logging import get_logger

logger = get_logger()

# Map exception types to status codes
ErrorMapping = dict[type[Exception], int]


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns exceptions raised by handlers into consistent JSON error bodies.

    Body shape: ``error`` (exception class), ``message``, ``status_code``
    and ``correlation_id``.
    """

    def __init__(self, app: ASGIApp) -> None:
        """
        Initialize middleware with error mappings.

        Args:
        ----
            app: The ASGI application
        """
        super().__init__(app)
        self.error_mapping: ErrorMapping = {
            RecordNotFound: HTTP_404_NOT_FOUND,
            KeyError: HTTP_404_NOT_FOUND,
            ValueError: HTTP_422_UNPROCESSABLE_ENTITY,
            LedgerBusy: HTTP_503_SERVICE_UNAVAILABLE,
        }

    def _status_for(self, exc: Exception) -> int:
        for exc_type in type(exc).__mro__:
            if exc_type in self.error_mapping:
                return self.error_mapping[exc_type]
        return int(getattr(exc, "status_code", HTTP_500_INTERNAL_SERVER_ERROR))

    @staticmethod
    def _detail_for(exc: Exception) -> str:
        if isinstance(exc, KeyError):
            return f"'{exc.args[0]}'" if exc.args else str(exc)
        return str(exc.args[0] if exc.args else exc)

    def _respond(self, request: Request, exc: Exception) -> JSONResponse:
        error_type = exc.__class__.__name__
        status_code = self._status_for(exc)
        detail = self._detail_for(exc)
        correlation_id = getattr(request.state, "correlation_id", None)

        log = logger.error if status_code >= HTTP_500_INTERNAL_SERVER_ERROR else logger.warning
        log(
            "request_error",
            error_type=error_type,
            error_message=detail,
            status_code=status_code,
            path=request.url.path,
            method=request.method,
            correlation_id=correlation_id,
        )

        response = JSONResponse(
            status_code=status_code,
            content={
                "error": error_type,
                "message": detail,
                "status_code": status_code,
                "correlation_id": correlation_id if correlation_id else "unknown",
            },
        )
        if correlation_id:
            response.headers["X-Request-ID"] = str(correlation_id)
        return response

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        """
        Process the request/response cycle and handle errors.

        Args:
        ----
            request: The incoming request
            call_next: The next handler in the middleware chain

        Returns:
        -------
            The response from downstream handlers or error response
        """
        try:
            return await call_next(request)
        except Exception as exc:
            return self._respond(request, exc)
