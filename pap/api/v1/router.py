"""API v1 router module."""

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette import status
from starlette.concurrency import run_in_threadpool

from pap.core.config import settings
from pap.intake.models import Duplicate, Malformed
from pap.pipeline import Platform, get_platform
from pap.status.models import StatusKind

router = APIRouter(default_response_class=JSONResponse)


def platform_dependency(request: Request) -> Platform:
    """Platform installed by the startup handler, or the process default."""
    platform = getattr(request.app.state, "platform", None)
    if platform is None:
        platform = get_platform()
        request.app.state.platform = platform
    return platform


async def read_upload(request: Request, limit: int) -> bytes | None:
    """Read the request body, giving up once it exceeds ``limit`` bytes.

    Returns:
        The body, or None if it is too big
    """
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        return None

    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("/submit")
async def submit_package(
    request: Request,
    platform: Platform = Depends(platform_dependency),
) -> JSONResponse:
    """
    Submit an analysis package.

    The request body is the raw package archive. Identical content is
    analysed once; resubmitting it returns a pointer to the existing job.
    """
    raw = await read_upload(request, platform.max_upload_bytes)
    if raw is None:
        outcome = platform.gate.reject(
            f"package is too big (limit {platform.max_upload_bytes} bytes)"
        )
    else:
        outcome = await run_in_threadpool(platform.gate.admit, raw)

    if isinstance(outcome, Malformed):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": outcome.status, "reason": outcome.reason},
        )

    body: dict[str, Any] = {
        "status": outcome.status,
        "hash": outcome.hash,
        "status_url": request.app.url_path_for(
            "get_status", content_hash=outcome.hash
        ),
    }
    code = (
        status.HTTP_200_OK
        if isinstance(outcome, Duplicate)
        else status.HTTP_202_ACCEPTED
    )
    return JSONResponse(status_code=code, content=body)


@router.get("/status/{content_hash}", name="get_status")
async def get_status(
    content_hash: str,
    platform: Platform = Depends(platform_dependency),
) -> JSONResponse:
    """Get the status of a submitted package by its hash."""
    view = await run_in_threadpool(platform.resolver.status, content_hash)
    code = (
        status.HTTP_404_NOT_FOUND
        if view.status is StatusKind.NOT_FOUND
        else status.HTTP_200_OK
    )
    return JSONResponse(status_code=code, content=view.to_response())


@router.get("/health")
async def health_check(
    request: Request,
    platform: Platform = Depends(platform_dependency),
) -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.version,
        "queue_depth": len(platform.queue),
        "slots": platform.dispatcher.slots,
        "correlation_id": getattr(request.state, "correlation_id", None),
    }
