from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    content_type: str = Field(alias="fileType")
    file_data: str = Field(alias="fileData")  # base64, standard alphabet
    allow_downloads: bool = Field(default=False, alias="allowDownloads")
    allow_copying: bool = Field(default=False, alias="allowCopying")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    max_views: Optional[int] = Field(default=None, alias="maxViews")
    password_hash: Optional[str] = Field(default=None, alias="passwordHash")


class UploadResponse(BaseModel):
    token: str


class SweepResponse(BaseModel):
    success: bool = True
    timestamp: datetime
    promoted: int
    blob_objects_deleted: int
    inline_records_deleted: int
    metadata_deleted: int
    blob_failures: int
    total_files_deleted: int
    message: str
