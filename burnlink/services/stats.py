from sqlalchemy import func
from sqlmodel import Session, select

from burnlink.models import FileRecord, FileStatus


def fetch_storage_totals(session: Session) -> dict[str, int]:
    total_records = session.exec(select(func.count(FileRecord.token))).one()
    active_records = session.exec(
        select(func.count(FileRecord.token)).where(FileRecord.status == FileStatus.ACTIVE)
    ).one()
    blob_records = session.exec(
        select(func.count(FileRecord.token)).where(FileRecord.blob_id.is_not(None))
    ).one()
    total_bytes = session.exec(select(func.coalesce(func.sum(FileRecord.size_bytes), 0))).one()

    return {
        "total_records": int(total_records or 0),
        "active_records": int(active_records or 0),
        "blob_records": int(blob_records or 0),
        "total_bytes": int(total_bytes or 0),
    }
