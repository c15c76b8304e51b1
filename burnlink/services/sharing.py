from __future__ import annotations

import base64
import binascii
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from burnlink.config import (
    DEFAULT_EXPIRY_HOURS,
    MAX_FILE_SIZE,
    UPLOAD_RATE_LIMIT,
    UPLOAD_RATE_WINDOW_SECONDS,
    VIEW_RATE_LIMIT,
    VIEW_RATE_WINDOW_SECONDS,
)
from burnlink.core.access import check_access
from burnlink.core.exceptions import GoneError, InvalidInputError, PayloadTooLargeError, StorageError
from burnlink.core.rate_limit import UPLOAD, VIEW, RateLimiter
from burnlink.expiry import GONE_MESSAGES, ExpiryOutcome, evaluate
from burnlink.models import FileRecord, FileStatus, as_utc, utcnow
from burnlink.records import RecordStore
from burnlink.schemas import UploadRequest
from burnlink.storage import StorageSelector

logger = logging.getLogger("burnlink.sharing")

NOTEBOOK_CONTENT_TYPE = "application/x-ipynb+json"

ALLOWED_CONTENT_TYPES = frozenset(
    {
        "application/pdf",
        NOTEBOOK_CONTENT_TYPE,
        # Text & markup
        "text/plain", "text/markdown", "text/html", "text/css", "text/x-latex",
        # Source code
        "text/javascript", "application/javascript", "text/x-jsx", "text/x-tsx",
        "text/x-python", "text/x-csrc", "text/x-c++src", "text/x-java-source",
        "text/x-go", "text/x-ruby", "text/x-php", "text/x-shellscript",
        "text/x-typescript", "text/x-rustsrc", "text/x-r", "text/x-powershell",
        # Images
        "image/png", "image/jpeg", "image/gif", "image/webp", "image/svg+xml",
        # Videos
        "video/mp4", "video/webm", "video/ogg",
    }
)

MAX_FILE_SIZE_MB = MAX_FILE_SIZE / (1024 * 1024)


@dataclass
class FetchResult:
    token: str
    filename: str
    content_type: str
    is_encrypted: bool
    allow_downloads: bool
    allow_copying: bool
    views_remaining: Optional[int]
    body: Optional[bytes] = None

    @classmethod
    def from_record(cls, record: FileRecord, body: Optional[bytes] = None) -> "FetchResult":
        return cls(
            token=record.token,
            filename=record.filename,
            content_type=record.content_type,
            is_encrypted=record.is_encrypted,
            allow_downloads=record.allow_downloads,
            allow_copying=record.allow_copying,
            views_remaining=record.views_remaining,
            body=body,
        )


def _check_deadline(deadline: Optional[float], operation: str) -> None:
    """Abort with StorageError once the monotonic ``deadline`` has passed."""
    if deadline is not None and time.monotonic() >= deadline:
        logger.warning("event=deadline_exceeded operation=%s", operation)
        raise StorageError("Operation timed out")


def decode_payload(file_data: str) -> bytes:
    # Line-wrapped base64 (MIME style) is accepted; any other stray byte is not.
    file_data = file_data.replace("\r", "").replace("\n", "")
    # Reject before decoding when the encoded form alone is already too big.
    if len(file_data) > (MAX_FILE_SIZE * 4) // 3 + 4:
        raise PayloadTooLargeError(f"File too large. Maximum allowed size is {MAX_FILE_SIZE_MB:.1f} MB.")
    try:
        payload = base64.b64decode(file_data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError("Invalid file data") from exc
    if not payload:
        raise InvalidInputError("Invalid file data")
    if len(payload) > MAX_FILE_SIZE:
        raise PayloadTooLargeError(f"File too large. Maximum allowed size is {MAX_FILE_SIZE_MB:.1f} MB.")
    return payload


class ShareService:
    """Create and fetch flows over the lifecycle components."""

    def __init__(
        self,
        records: RecordStore | None = None,
        selector: StorageSelector | None = None,
        limiter: RateLimiter | None = None,
        clock: Callable[[], datetime] = utcnow,
        upload_limit: tuple[int, int] = (UPLOAD_RATE_LIMIT, UPLOAD_RATE_WINDOW_SECONDS),
        view_limit: tuple[int, int] = (VIEW_RATE_LIMIT, VIEW_RATE_WINDOW_SECONDS),
    ) -> None:
        self.records = records or RecordStore()
        self.selector = selector or StorageSelector()
        self.limiter = limiter or RateLimiter()
        self.clock = clock
        self.upload_limit = upload_limit
        self.view_limit = view_limit

    def create(self, identity: str, request: UploadRequest, deadline: Optional[float] = None) -> FileRecord:
        self.limiter.check(identity, UPLOAD, *self.upload_limit)

        if not request.filename.strip():
            raise InvalidInputError("Missing filename")
        if request.content_type not in ALLOWED_CONTENT_TYPES:
            raise InvalidInputError("Invalid file type")
        if request.max_views is not None and request.max_views < 1:
            raise InvalidInputError("maxViews must be a positive integer")
        payload = decode_payload(request.file_data)

        now = self.clock()
        expires_at = (
            as_utc(request.expires_at)
            if request.expires_at is not None
            else now + timedelta(hours=DEFAULT_EXPIRY_HOURS)
        )
        # The one-view default applies here only; a stored NULL means unlimited.
        max_views = request.max_views if request.max_views is not None else 1
        password_hash = request.password_hash or None

        _check_deadline(deadline, "create")
        location = self.selector.store(payload)
        record = FileRecord(
            token=str(uuid.uuid4()),
            filename=request.filename,
            content_type=request.content_type,
            size_bytes=len(payload),
            created_at=now,
            expires_at=expires_at,
            max_views=max_views,
            current_views=0,
            status=FileStatus.ACTIVE,
            password_hash=password_hash,
            is_encrypted=password_hash is not None,
            allow_downloads=request.allow_downloads,
            allow_copying=request.allow_copying,
            **location.columns(),
        )
        try:
            _check_deadline(deadline, "create")
            token = self.records.create(record)
        except StorageError:
            if record.blob_id:
                # Not rolled back; the blob stays until cleaned out of band.
                logger.error("event=orphaned_blob blob_id=%s", record.blob_id)
            raise
        logger.info(
            "event=upload_success token=%s size_bytes=%s content_type=%s storage=%s encrypted=%s",
            token,
            len(payload),
            request.content_type,
            "blob" if record.blob_id else "inline",
            record.is_encrypted,
        )
        return record

    def fetch(
        self,
        token: str,
        identity: str,
        password_hash: Optional[str] = None,
        metadata_only: bool = False,
        deadline: Optional[float] = None,
    ) -> FetchResult:
        """Serve a record, consuming exactly one view unless ``metadata_only``.

        ``deadline`` is a ``time.monotonic()`` instant; once it has passed the
        view is not recorded and the fetched body is discarded.
        """
        self.limiter.check(identity, VIEW, *self.view_limit)

        record = self.records.get_by_token(token)
        now = self.clock()
        outcome = evaluate(record, now)
        if outcome.is_expired:
            if record.status == FileStatus.ACTIVE:
                self.records.mark_expired(token)
            logger.info("event=fetch_gone token=%s outcome=%s", token, outcome.value)
            raise GoneError(GONE_MESSAGES[outcome])

        check_access(record, password_hash)

        if metadata_only:
            return FetchResult.from_record(record)

        body = self.selector.fetch(record)
        _check_deadline(deadline, "fetch")
        updated = self.records.record_view_and_maybe_expire(token, now)
        if updated is None:
            # A concurrent viewer took the last view between our read and the update.
            logger.info("event=fetch_gone token=%s outcome=lost_race", token)
            raise GoneError(GONE_MESSAGES[ExpiryOutcome.EXPIRED_BY_VIEW_LIMIT])

        logger.info(
            "event=file_served token=%s views=%s status=%s",
            token,
            updated.current_views,
            updated.status.value,
        )
        return FetchResult.from_record(updated, body=body)
