from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from burnlink.cleaner import sweep_expired_records
from burnlink.config import CRON_SECRET, OPERATION_TIMEOUT_SECONDS, SWEEP_TIMEOUT_SECONDS
from burnlink.core.exceptions import ConversionError, InvalidInputError, StorageError, UnauthorizedError
from burnlink.core.metrics import metrics
from burnlink.db import get_session
from burnlink.models import utcnow
from burnlink.schemas import SweepResponse, UploadRequest, UploadResponse
from burnlink.services.notebook import html_filename, render_notebook_html
from burnlink.services.sharing import NOTEBOOK_CONTENT_TYPE, FetchResult, ShareService
from burnlink.services.stats import fetch_storage_totals

router = APIRouter()

logger = logging.getLogger("burnlink")

share_service = ShareService()


def client_identity(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


async def _with_deadline(func, *args, timeout: float = OPERATION_TIMEOUT_SECONDS):
    """Run a blocking core call in the thread pool, bounded by ``timeout`` seconds.

    The worker thread cannot be cancelled, so ``func`` also receives the
    monotonic deadline and stops before any irreversible step once it passes.
    """
    deadline = time.monotonic() + timeout
    try:
        return await asyncio.wait_for(run_in_threadpool(func, *args, deadline=deadline), timeout)
    except asyncio.TimeoutError as exc:
        logger.error(
            "event=deadline_exceeded operation=%s timeout_seconds=%s",
            getattr(func, "__name__", func),
            timeout,
        )
        raise StorageError("Operation timed out") from exc


def require_cron_secret(request: Request):
    """Dependency guarding the sweep with the shared cron secret."""
    if not CRON_SECRET:
        raise HTTPException(status_code=403, detail="Cleanup is disabled on this server")

    supplied = request.headers.get("authorization", "")
    if not secrets.compare_digest(supplied.encode(), f"Bearer {CRON_SECRET}".encode()):
        raise UnauthorizedError("Unauthorized")


def _file_headers(result: FetchResult, filename: str) -> dict[str, str]:
    headers = {
        "Content-Disposition": f'inline; filename="{quote(filename)}"',
        "Cache-Control": "no-store, no-cache, must-revalidate",
        "X-Is-Encrypted": str(result.is_encrypted).lower(),
        "X-Allow-Downloads": str(result.allow_downloads).lower(),
        "X-Allow-Copying": str(result.allow_copying).lower(),
    }
    if result.views_remaining is not None:
        headers["X-Views-Remaining"] = str(result.views_remaining)
    return headers


@router.post("/api/upload", response_model=UploadResponse)
async def upload(payload: UploadRequest, request: Request):
    record = await _with_deadline(share_service.create, client_identity(request), payload)
    metrics.record_upload(record.size_bytes)
    return UploadResponse(token=record.token)


@router.api_route("/api/view", methods=["GET", "HEAD"])
async def view(
    request: Request,
    token: str = Query(default=""),
    fallback: bool = Query(default=True),
    x_password_hash: Optional[str] = Header(default=None),
):
    if not token:
        raise InvalidInputError("Token required")

    metadata_only = request.method == "HEAD"
    result = await _with_deadline(
        share_service.fetch,
        token,
        client_identity(request),
        x_password_hash,
        metadata_only,
    )
    if metadata_only:
        return Response(
            status_code=200,
            media_type=result.content_type,
            headers=_file_headers(result, result.filename),
        )

    metrics.record_view()
    body, content_type, filename = result.body, result.content_type, result.filename
    if content_type == NOTEBOOK_CONTENT_TYPE:
        # The view is already consumed; conversion only changes how it is presented.
        try:
            body = await run_in_threadpool(render_notebook_html, result.body)
            content_type, filename = "text/html", html_filename(filename)
        except ConversionError:
            if not fallback:
                raise
            logger.warning("event=conversion_fallback token=%s", token)

    return Response(content=body, media_type=content_type, headers=_file_headers(result, filename))


@router.api_route("/api/cleanup", methods=["GET", "POST"], dependencies=[Depends(require_cron_secret)])
async def cleanup():
    summary = await _with_deadline(
        sweep_expired_records,
        share_service.records,
        share_service.selector,
        timeout=SWEEP_TIMEOUT_SECONDS,
    )
    metrics.record_deletions(summary.metadata_deleted)
    return SweepResponse(
        timestamp=utcnow(),
        message=(
            f"Cleanup complete: {summary.blob_objects_deleted} blob files, "
            f"{summary.inline_records_deleted} inline files, "
            f"{summary.metadata_deleted} metadata records deleted"
        ),
        **summary.as_dict(),
    )


@router.get("/metrics")
def metrics_snapshot(session: Session = Depends(get_session)):
    stats = metrics.snapshot()
    totals = fetch_storage_totals(session)
    response = JSONResponse({**stats, **totals})
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    return response
