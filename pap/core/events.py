"""Application metrics and startup/shutdown events."""

import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from prometheus_client import Counter, Gauge, Histogram

from pap.core.config import settings

# Pipeline metrics
SUBMISSIONS_TOTAL = Counter(
    "pap_submissions_total",
    "Submissions by admission outcome",
    labelnames=["outcome"],
)

DISPATCH_OUTCOMES_TOTAL = Counter(
    "pap_dispatch_outcomes_total",
    "Finished sandbox attempts by outcome",
    labelnames=["outcome"],
)

JOBS_REQUEUED_TOTAL = Counter(
    "pap_jobs_requeued_total",
    "Jobs sent back to the queue after an infrastructure failure",
)

QUEUE_SIZE = Gauge(
    "pap_queue_size",
    "Current number of jobs in queue",
)

BUSY_SLOTS = Gauge(
    "pap_busy_slots",
    "Number of sandbox slots running an attempt",
)

EXECUTION_SECONDS = Histogram(
    "pap_execution_seconds",
    "Wall time of sandbox attempts",
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1200),
)

# HTTP metrics
REQUESTS_TOTAL = Counter(
    "pap_http_requests_total",
    "Total number of HTTP requests",
    labelnames=["method", "path"],
)

RESPONSES_TOTAL = Counter(
    "pap_http_responses_total",
    "Total number of HTTP responses",
    labelnames=["status_code"],
)

logger: logging.Logger = logging.getLogger("pap.core.events")

App = TypeVar("App", bound=Any)


def create_start_app_handler(app: App) -> Callable[[], Awaitable[None]]:
    """Create startup event handler.

    Builds the platform, repairs state left by a previous process and
    starts the dispatcher slots.

    Args:
        app: FastAPI application

    Returns:
        Startup handler
    """

    async def start_app() -> None:
        from pap.core.logging import configure_logging
        from pap.pipeline import get_platform

        configure_logging(
            testing=os.getenv("TESTING") == "true",
            level=settings.LOG_LEVEL,
            json_logs=settings.JSON_LOGS,
        )

        platform = get_platform()
        app.state.platform = platform
        platform.ledger.recover()
        QUEUE_SIZE.set(len(platform.ledger.queue))

        if settings.DISPATCHER_ENABLED:
            platform.dispatcher.start()
            logger.info(
                "Dispatcher started with %d slots", platform.dispatcher.slots
            )
        else:
            logger.info("Dispatcher disabled; expecting a separate worker process")

    return start_app


def create_stop_app_handler(app: App) -> Callable[[], Awaitable[None]]:
    """Create shutdown event handler.

    Args:
        app: FastAPI application

    Returns:
        Shutdown handler
    """

    async def stop_app() -> None:
        platform = getattr(app.state, "platform", None)
        if platform is None:
            return
        if platform.dispatcher.is_running:
            platform.dispatcher.stop()
            logger.info("Dispatcher stopped")

    return stop_app
