import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import CheckConstraint, Column, DateTime, Enum as SAEnum
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp, the form every datetime column holds."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Naive values are taken to already be UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime column that always binds and loads aware UTC values.

    SQLite keeps no offset, so values are normalised to UTC on the way in
    and tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)


class FileStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"


@dataclass(frozen=True)
class InlinePayload:
    data: bytes

    def columns(self) -> dict:
        return {"inline_data": self.data, "blob_id": None}


@dataclass(frozen=True)
class BlobPayload:
    blob_id: str

    def columns(self) -> dict:
        return {"inline_data": None, "blob_id": self.blob_id}


PayloadLocation = Union[InlinePayload, BlobPayload]


class FileRecord(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint(
            "(inline_data IS NULL) <> (blob_id IS NULL)",
            name="ck_filerecord_single_payload",
        ),
    )

    token: str = Field(primary_key=True)
    filename: str
    content_type: str
    size_bytes: int = Field(default=0)
    inline_data: Optional[bytes] = Field(default=None, nullable=True)  # Payload embedded in the row
    blob_id: Optional[str] = Field(default=None, nullable=True)        # Reference into the blob backend
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))
    expires_at: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False, index=True))
    max_views: Optional[int] = Field(default=None, nullable=True)      # None means unlimited
    current_views: int = Field(default=0)
    status: FileStatus = Field(
        default=FileStatus.ACTIVE,
        sa_column=Column(
            SAEnum(
                FileStatus,
                name="file_status",
                native_enum=False,
                length=16,
                values_callable=lambda members: [member.value for member in members],
            ),
            nullable=False,
            index=True,
        ),
    )
    password_hash: Optional[str] = Field(default=None, nullable=True)
    is_encrypted: bool = Field(default=False)
    allow_downloads: bool = Field(default=False)
    allow_copying: bool = Field(default=False)

    @property
    def payload_location(self) -> PayloadLocation:
        if self.blob_id is not None:
            return BlobPayload(self.blob_id)
        if self.inline_data is not None:
            return InlinePayload(self.inline_data)
        raise ValueError(f"record {self.token} has no payload location")

    @property
    def views_remaining(self) -> Optional[int]:
        if self.max_views is None:
            return None
        return max(0, self.max_views - self.current_views)


class RateLimitCounter(SQLModel, table=True):
    """Fixed-window hit counter for one (identity, action) pair."""

    identity: str = Field(primary_key=True)
    action: str = Field(primary_key=True)
    count: int = Field(default=0)
    window_started_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))
