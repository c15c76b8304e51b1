from __future__ import annotations

import enum
from datetime import datetime

from burnlink.models import FileRecord, FileStatus


class ExpiryOutcome(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED_BY_TIME = "expired_by_time"
    EXPIRED_BY_VIEW_LIMIT = "expired_by_view_limit"
    ALREADY_EXPIRED = "already_expired"

    @property
    def is_expired(self) -> bool:
        return self is not ExpiryOutcome.ACTIVE


def evaluate(record: FileRecord, now: datetime) -> ExpiryOutcome:
    """Classify a record at ``now``. Pure: never touches storage."""
    if record.status == FileStatus.EXPIRED:
        return ExpiryOutcome.ALREADY_EXPIRED
    if record.status != FileStatus.ACTIVE:
        raise ValueError(f"unknown status {record.status!r}")
    if now > record.expires_at:
        return ExpiryOutcome.EXPIRED_BY_TIME
    if record.max_views is not None and record.current_views >= record.max_views:
        return ExpiryOutcome.EXPIRED_BY_VIEW_LIMIT
    return ExpiryOutcome.ACTIVE


GONE_MESSAGES = {
    ExpiryOutcome.EXPIRED_BY_TIME: "File has expired",
    ExpiryOutcome.EXPIRED_BY_VIEW_LIMIT: "View limit reached",
    ExpiryOutcome.ALREADY_EXPIRED: "File has expired",
}
