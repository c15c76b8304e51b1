from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from burnlink.core.metrics import metrics

logger = logging.getLogger("burnlink")


class BurnlinkError(Exception):
    """Base class for every failure the service reports to callers."""

    status_code = 500
    detail = "Internal server error"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class InvalidInputError(BurnlinkError):
    status_code = 400
    detail = "Invalid request"


class PayloadTooLargeError(InvalidInputError):
    status_code = 413
    detail = "File too large"


class NotFoundError(BurnlinkError):
    status_code = 404
    detail = "File not found or expired"


class GoneError(BurnlinkError):
    """The record existed and reached its time or view limit."""

    status_code = 410
    detail = "File has expired"


class UnauthorizedError(BurnlinkError):
    status_code = 401
    detail = "Password required"


class RateLimitedError(BurnlinkError):
    status_code = 429
    detail = "Rate limit exceeded"

    def __init__(self, detail: str | None = None, retry_after: int = 1) -> None:
        super().__init__(detail)
        self.retry_after = max(1, int(retry_after))


class StorageError(BurnlinkError):
    # Public detail stays generic; the cause is only logged.
    status_code = 500
    detail = "Storage backend unavailable"


class ConversionError(BurnlinkError):
    status_code = 502
    detail = "Failed to convert notebook to HTML."


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BurnlinkError)
    async def burnlink_error_handler(request: Request, exc: BurnlinkError):
        headers = None
        if isinstance(exc, RateLimitedError):
            headers = {"Retry-After": str(exc.retry_after)}
            metrics.record_rejection("rate_limited")
        elif isinstance(exc, GoneError):
            metrics.record_rejection("gone")
        if exc.status_code >= 500:
            logger.error(
                "event=request_failed path=%s error=%s detail=%s",
                request.url.path,
                type(exc).__name__,
                exc.detail,
            )
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code, headers=headers)
