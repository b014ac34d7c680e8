"""File request/response schemas."""
from datetime import datetime
from typing import Optional

from filekeeper.schemas.base import CamelModel, CamelORMModel
from filekeeper.schemas.cleanup import CleanupStats


class FileUploadResponse(CamelModel):
    name: str
    display_name: str
    media_type: str
    byte_size: int
    url: str


class FileResponse(CamelORMModel):
    name: str
    display_name: str
    media_type: str
    byte_size: int
    storage_path: str
    created_at: Optional[datetime] = None


class FileDeleteResponse(CamelModel):
    name: str
    display_name: str
    deleted_at: datetime


class Pagination(CamelModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class FileListResponse(CamelModel):
    files: list[FileResponse]
    pagination: Pagination


class MediaTypeStats(CamelModel):
    media_type: str
    count: int
    total_size: int
    average_size: int


class StorageSummary(CamelModel):
    total_files: int
    total_size: int
    average_size: int


class StorageStatsResponse(CamelModel):
    summary: StorageSummary
    by_type: list[MediaTypeStats]
    cleanup: CleanupStats
