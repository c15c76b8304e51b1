from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler

from burnlink.config import CLEANER_INTERVAL_MINUTES, SWEEP_TIMEOUT_SECONDS
from burnlink.core.exceptions import StorageError
from burnlink.models import FileStatus, utcnow
from burnlink.records import RecordStore
from burnlink.storage import StorageSelector

logger = logging.getLogger("burnlink.cleaner")


@dataclass
class SweepSummary:
    promoted: int = 0
    blob_objects_deleted: int = 0
    inline_records_deleted: int = 0
    metadata_deleted: int = 0
    blob_failures: int = 0

    @property
    def total_files_deleted(self) -> int:
        return self.blob_objects_deleted + self.inline_records_deleted

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["total_files_deleted"] = self.total_files_deleted
        return payload


def sweep_expired_records(
    records: RecordStore,
    selector: StorageSelector,
    now: datetime | None = None,
    deadline: float | None = None,
) -> SweepSummary:
    """Expire stale records, then purge every expired record from both backends.

    Stale ACTIVE records are promoted first so that a sweep leaves nothing
    behind for an immediately following one to do. Once the monotonic
    ``deadline`` passes no further blobs are purged; rows already released
    are still deleted and the rest wait for the next sweep.
    """
    now = now or utcnow()
    summary = SweepSummary()
    summary.promoted = records.promote_stale_active_records(now)

    purged_blob_tokens = []
    for record in records.scan_by_status(FileStatus.EXPIRED):
        if deadline is not None and time.monotonic() >= deadline:
            logger.warning("event=sweep_deadline_reached purged=%d", len(purged_blob_tokens))
            break
        if record.blob_id is None:
            summary.inline_records_deleted += 1
            continue
        try:
            if selector.purge(record):
                summary.blob_objects_deleted += 1
        except StorageError:
            # Keep the row so the blob is retried on the next sweep.
            summary.blob_failures += 1
            continue
        purged_blob_tokens.append(record.token)

    summary.metadata_deleted = records.delete_many(FileStatus.EXPIRED, blob_tokens=purged_blob_tokens)

    if summary.blob_failures:
        logger.warning(
            "event=sweep_summary deleted=%d blob_failures=%d",
            summary.metadata_deleted,
            summary.blob_failures,
        )
    logger.info(
        "event=sweep_complete promoted=%d blobs=%d inline=%d metadata=%d",
        summary.promoted,
        summary.blob_objects_deleted,
        summary.inline_records_deleted,
        summary.metadata_deleted,
    )
    return summary


def start_cleaner(metrics, logger, records: RecordStore | None = None, selector: StorageSelector | None = None):
    scheduler = BackgroundScheduler()
    records = records or RecordStore()
    selector = selector or StorageSelector()

    def _job():
        try:
            summary = sweep_expired_records(
                records, selector, deadline=time.monotonic() + SWEEP_TIMEOUT_SECONDS
            )
            if summary.metadata_deleted:
                metrics.record_deletions(summary.metadata_deleted)
                logger.info("event=cleanup_deleted count=%s", summary.metadata_deleted)
        except StorageError as e:
            logger.error("Storage error in cleanup job: %s", e)
            # Logged only; the scheduler retries on its next tick.
        except Exception as e:
            logger.error("Unexpected error in cleanup job: %s", str(e))

    scheduler.add_job(_job, "interval", minutes=CLEANER_INTERVAL_MINUTES)
    scheduler.start()
    return scheduler
