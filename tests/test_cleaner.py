import logging
import os
import time
from datetime import datetime, timedelta, timezone

import pytest

from burnlink.cleaner import start_cleaner, sweep_expired_records
from burnlink.core.exceptions import NotFoundError, StorageError
from burnlink.core.metrics import MetricsStore
from burnlink.models import FileRecord, FileStatus

NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _store(records, selector, token, payload, **overrides):
    fields = dict(
        token=token,
        filename=f"{token}.bin",
        content_type="application/pdf",
        size_bytes=len(payload),
        created_at=NOW - timedelta(hours=1),
        expires_at=NOW + timedelta(hours=1),
        max_views=1,
    )
    fields.update(overrides)
    records.create(FileRecord(**fields, **selector.store(payload).columns()))


@pytest.fixture
def populated(records, selector):
    _store(records, selector, "inline-expired", b"a" * 10)
    _store(records, selector, "blob-expired", b"b" * 4096)
    _store(records, selector, "inline-stale-time", b"c" * 10, expires_at=NOW - timedelta(minutes=1))
    _store(records, selector, "blob-stale-views", b"d" * 4096, current_views=1)
    _store(records, selector, "inline-active", b"e" * 10)
    _store(records, selector, "blob-active", b"f" * 4096)
    records.mark_expired("inline-expired")
    records.mark_expired("blob-expired")
    return records


def test_sweep_purges_expired_and_promotes_stale(populated, selector, blob_store):
    summary = sweep_expired_records(populated, selector, NOW)

    assert summary.promoted == 2
    assert summary.blob_objects_deleted == 2
    assert summary.inline_records_deleted == 2
    assert summary.metadata_deleted == 4
    assert summary.total_files_deleted == 4
    assert summary.blob_failures == 0

    for token in ("inline-expired", "blob-expired", "inline-stale-time", "blob-stale-views"):
        with pytest.raises(NotFoundError):
            populated.get_by_token(token)
    assert populated.get_by_token("inline-active").status == FileStatus.ACTIVE
    assert populated.get_by_token("blob-active").status == FileStatus.ACTIVE
    assert len(os.listdir(blob_store.root)) == 1


def test_second_sweep_is_a_no_op(populated, selector):
    sweep_expired_records(populated, selector, NOW)
    again = sweep_expired_records(populated, selector, NOW)

    assert again.as_dict() == {
        "promoted": 0,
        "blob_objects_deleted": 0,
        "inline_records_deleted": 0,
        "metadata_deleted": 0,
        "blob_failures": 0,
        "total_files_deleted": 0,
    }


def test_failed_blob_purge_keeps_row_for_next_sweep(populated, selector, monkeypatch):
    original_delete = selector.blob_store.delete

    def failing_delete(blob_id):
        raise StorageError()

    monkeypatch.setattr(selector.blob_store, "delete", failing_delete)
    summary = sweep_expired_records(populated, selector, NOW)

    assert summary.blob_failures == 2
    assert summary.metadata_deleted == 2
    assert populated.get_by_token("blob-expired").status == FileStatus.EXPIRED

    monkeypatch.setattr(selector.blob_store, "delete", original_delete)
    retry = sweep_expired_records(populated, selector, NOW)
    assert retry.blob_objects_deleted == 2
    assert retry.metadata_deleted == 2


def test_missing_blob_still_releases_metadata(records, selector, blob_store):
    _store(records, selector, "blob-gone", b"g" * 4096)
    records.mark_expired("blob-gone")
    for name in os.listdir(blob_store.root):
        os.remove(os.path.join(blob_store.root, name))

    summary = sweep_expired_records(records, selector, NOW)

    assert summary.blob_objects_deleted == 0
    assert summary.metadata_deleted == 1


def test_sweep_past_its_deadline_leaves_blobs_for_the_next_run(populated, selector, blob_store):
    summary = sweep_expired_records(populated, selector, NOW, deadline=time.monotonic() - 1)

    assert summary.promoted == 2
    assert summary.blob_objects_deleted == 0
    assert populated.get_by_token("blob-expired").status == FileStatus.EXPIRED
    assert populated.get_by_token("blob-stale-views").status == FileStatus.EXPIRED
    assert len(os.listdir(blob_store.root)) == 3

    follow_up = sweep_expired_records(populated, selector, NOW)
    assert follow_up.blob_objects_deleted == 2
    assert len(os.listdir(blob_store.root)) == 1


def test_scheduled_cleaner_runs_sweep_and_records_deletions(populated, selector):
    store = MetricsStore()
    scheduler = start_cleaner(store, logging.getLogger("test.cleaner"), records=populated, selector=selector)
    try:
        jobs = scheduler.get_jobs()
        assert len(jobs) == 1
        jobs[0].func()
    finally:
        scheduler.shutdown(wait=False)

    assert not scheduler.running
    # The job sweeps against the real clock, so every fixture record is past due.
    assert store.snapshot()["deleted"] == 6
