"""Main FastAPI application module."""

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from pap.api.v1.router import router as v1_router
from pap.core.config import settings
from pap.core.events import create_start_app_handler, create_stop_app_handler
from pap.middleware.correlation import CorrelationMiddleware
from pap.middleware.errors import ErrorHandlingMiddleware
from pap.middleware.metrics import MetricsMiddleware

app = FastAPI(
    title=settings.app_name,
    description="Deduplicating submission pipeline for sandboxed program analysis",
    version=settings.version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    default_response_class=JSONResponse,
)

# Middleware added last runs first:
# error handling -> metrics -> correlation (adds request ID) -> CORS -> routes
# Correlation runs inside error handling: error responses take the request ID
# from request.state, which both middlewares share, and set the header themselves.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=600,
)
app.add_middleware(CorrelationMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(ErrorHandlingMiddleware)


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Event handlers
app.add_event_handler("startup", create_start_app_handler(app))
app.add_event_handler("shutdown", create_stop_app_handler(app))

app.include_router(v1_router, prefix=settings.api_prefix)
