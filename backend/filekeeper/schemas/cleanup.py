"""Cleanup queue schemas."""
from datetime import datetime
from typing import Optional

from filekeeper.schemas.base import CamelModel, CamelORMModel


class CleanupEntryResponse(CamelORMModel):
    name: str
    failed_at: datetime
    resolved: bool
    detail: Optional[str] = None


class CleanupStats(CamelModel):
    total_items: int
    pending_items: int
    processed_items: int
    oldest_failure: Optional[datetime] = None
    newest_failure: Optional[datetime] = None


class ProcessQueueResponse(CamelModel):
    processed: int


class ArchiveResponse(CamelModel):
    archived: int
    days_old: int


class OrphanCleanupResponse(CamelModel):
    orphans: list[str]
    deleted: int
    dry_run: bool
