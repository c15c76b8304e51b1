from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import QueuePool
from sqlmodel import SQLModel, create_engine

import burnlink.models  # noqa: F401  registers the tables
from burnlink.core.rate_limit import RateLimiter
from burnlink.records import RecordStore
from burnlink.services.sharing import ShareService
from burnlink.storage import BlobStore, StorageSelector


class FrozenClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine(tmp_path):
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=20,
    )
    SQLModel.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def blob_store(tmp_path):
    return BlobStore(str(tmp_path / "blobs"))


@pytest.fixture
def selector(blob_store):
    return StorageSelector(blob_store, threshold=1024)


@pytest.fixture
def records(engine):
    return RecordStore(engine)


@pytest.fixture
def limiter(engine):
    return RateLimiter(engine=engine)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(records, selector, limiter, clock):
    return ShareService(
        records=records,
        selector=selector,
        limiter=limiter,
        clock=clock,
        upload_limit=(1000, 3600),
        view_limit=(1000, 3600),
    )
