from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import and_, case, delete, literal, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from burnlink.config import SWEEP_BATCH_SIZE
from burnlink.core.exceptions import NotFoundError, StorageError
from burnlink.db import get_engine
from burnlink.models import FileRecord, FileStatus, utcnow

logger = logging.getLogger("burnlink.records")


def _status_literal(status: FileStatus):
    return literal(status, type_=FileRecord.__table__.c.status.type)


class RecordStore:
    """The only component that reads or writes FileRecord rows.

    Every mutation that other requests could race with is issued as a single
    conditional UPDATE/DELETE so the database arbitrates concurrent callers.
    """

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("event=record_store_failure operation=%s error=%s", operation, exc)
            raise StorageError() from exc

    def create(self, record: FileRecord) -> str:
        with self._session("create") as session:
            session.add(record)
            session.commit()
        return record.token

    def get_by_token(self, token: str) -> FileRecord:
        with self._session("get") as session:
            record = session.get(FileRecord, token)
        if record is None:
            raise NotFoundError()
        return record

    def record_view_and_maybe_expire(self, token: str, now: datetime | None = None) -> FileRecord | None:
        """Count one view, expiring the record in the same statement when it hits its ceiling.

        Returns the updated record, or None when the record could no longer
        be viewed (expired, past its deadline, or out of views) by the time
        the update ran. Raises NotFoundError for unknown tokens.
        """
        now = now or utcnow()
        next_views = FileRecord.current_views + 1
        stmt = (
            update(FileRecord)
            .where(
                FileRecord.token == token,
                FileRecord.status == FileStatus.ACTIVE,
                FileRecord.expires_at >= now,
                or_(FileRecord.max_views.is_(None), FileRecord.current_views < FileRecord.max_views),
            )
            .values(
                current_views=next_views,
                status=case(
                    (
                        and_(FileRecord.max_views.is_not(None), next_views >= FileRecord.max_views),
                        _status_literal(FileStatus.EXPIRED),
                    ),
                    else_=FileRecord.status,
                ),
            )
            .returning(FileRecord)
            .execution_options(synchronize_session=False)
        )
        with self._session("record_view") as session:
            updated = session.execute(stmt).scalars().first()
            session.commit()
            if updated is None and session.get(FileRecord, token) is None:
                raise NotFoundError()
        return updated

    def mark_expired(self, token: str) -> bool:
        stmt = (
            update(FileRecord)
            .where(FileRecord.token == token, FileRecord.status == FileStatus.ACTIVE)
            .values(status=FileStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        with self._session("mark_expired") as session:
            result = session.execute(stmt)
            session.commit()
        if result.rowcount:
            logger.info("event=record_expired token=%s", token)
        return bool(result.rowcount)

    def scan_by_status(self, status: FileStatus, batch_size: int = SWEEP_BATCH_SIZE) -> Iterator[FileRecord]:
        """Yield every record in ``status``, one page of ``batch_size`` rows at a time."""
        last_token = None
        while True:
            stmt = (
                select(FileRecord)
                .where(FileRecord.status == status)
                .order_by(FileRecord.token)
                .limit(batch_size)
            )
            if last_token is not None:
                stmt = stmt.where(FileRecord.token > last_token)
            with self._session("scan") as session:
                batch = session.exec(stmt).all()
            yield from batch
            if len(batch) < batch_size:
                return
            last_token = batch[-1].token

    def promote_stale_active_records(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        stmt = (
            update(FileRecord)
            .where(
                FileRecord.status == FileStatus.ACTIVE,
                or_(
                    FileRecord.expires_at < now,
                    and_(
                        FileRecord.max_views.is_not(None),
                        FileRecord.current_views >= FileRecord.max_views,
                    ),
                ),
            )
            .values(status=FileStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        with self._session("promote_stale") as session:
            result = session.execute(stmt)
            session.commit()
        return result.rowcount

    def delete_many(
        self,
        status: FileStatus,
        blob_tokens: Iterable[str] | None = None,
        batch_size: int = SWEEP_BATCH_SIZE,
    ) -> int:
        """Delete rows in ``status``.

        With ``blob_tokens``, blob-backed rows are only deleted when their
        token is listed, so a row never outlives the knowledge of its blob.
        Listed tokens are deleted ``batch_size`` at a time to keep each
        statement under the backend's bind parameter limit.
        """
        base = delete(FileRecord).where(FileRecord.status == status)
        if blob_tokens is None:
            statements = [base]
        else:
            tokens = list(blob_tokens)
            statements = [base.where(FileRecord.blob_id.is_(None))]
            statements.extend(
                base.where(FileRecord.token.in_(tokens[start:start + batch_size]))
                for start in range(0, len(tokens), batch_size)
            )

        deleted = 0
        with self._session("delete_many") as session:
            for stmt in statements:
                result = session.execute(stmt.execution_options(synchronize_session=False))
                deleted += result.rowcount
            session.commit()
        return deleted
