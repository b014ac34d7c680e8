"""Cleanup queue API - inspect and drain names awaiting reconciliation."""
from typing import Optional
from fastapi import APIRouter, Depends, Query

from filekeeper.config import settings
from filekeeper.dependencies import get_transaction_service
from filekeeper.schemas.cleanup import (
    ArchiveResponse,
    CleanupEntryResponse,
    CleanupStats,
    OrphanCleanupResponse,
    ProcessQueueResponse,
)
from filekeeper.services.transaction import FileTransactionService

router = APIRouter(prefix="/api/cleanup", tags=["cleanup"])


@router.get("", response_model=list[CleanupEntryResponse])
async def list_cleanup_entries(
    pending_only: bool = Query(False, alias="pendingOnly"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: FileTransactionService = Depends(get_transaction_service),
):
    """List queued names, newest failure first (or oldest first when pending only)."""
    if pending_only:
        return await service.cleanup_queue.get_pending(limit)
    return await service.cleanup_queue.get_all(limit, offset)


@router.get("/stats", response_model=CleanupStats)
async def cleanup_stats(service: FileTransactionService = Depends(get_transaction_service)):
    return await service.cleanup_queue.get_stats()


@router.get("/stale", response_model=list[CleanupEntryResponse])
async def stale_entries(
    older_than_minutes: Optional[int] = Query(None, alias="olderThanMinutes", ge=1),
    service: FileTransactionService = Depends(get_transaction_service),
):
    """Entries still unresolved long after their failure."""
    return await service.cleanup_queue.get_stale_pending(
        older_than_minutes or settings.STALE_PENDING_MINUTES
    )


@router.post("/process", response_model=ProcessQueueResponse)
async def process_queue(
    batch_size: Optional[int] = Query(None, alias="batchSize", ge=1, le=1000),
    service: FileTransactionService = Depends(get_transaction_service),
):
    """Reconcile a batch of pending names now."""
    processed = await service.process_cleanup_queue(batch_size or settings.CLEANUP_BATCH_SIZE)
    return ProcessQueueResponse(processed=processed)


@router.post("/archive", response_model=ArchiveResponse)
async def archive_processed(
    days_old: Optional[int] = Query(None, alias="daysOld", ge=0),
    service: FileTransactionService = Depends(get_transaction_service),
):
    """Drop resolved entries older than `daysOld` days."""
    days = settings.CLEANUP_ARCHIVE_DAYS if days_old is None else days_old
    archived = await service.cleanup_queue.archive_old_processed(days)
    return ArchiveResponse(archived=archived, days_old=days)


@router.post("/orphans", response_model=OrphanCleanupResponse)
async def clean_orphans(
    dry_run: bool = Query(True, alias="dryRun"),
    service: FileTransactionService = Depends(get_transaction_service),
):
    """Find (and unless dry-running, delete) blobs that have no metadata row."""
    report = await service.clean_orphans(dry_run=dry_run)
    return OrphanCleanupResponse(orphans=report.orphans, deleted=report.deleted, dry_run=report.dry_run)
