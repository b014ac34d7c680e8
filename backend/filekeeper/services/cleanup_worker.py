"""Background cleanup worker.

Periodically drains the cleanup queue and archives old resolved entries.
Runs as an asyncio task within the FastAPI process when
CLEANUP_INTERVAL_SECONDS is set; otherwise the queue is processed on demand
through the API.
"""
import asyncio
import logging

from filekeeper.config import settings
from filekeeper.services.transaction import FileTransactionService

logger = logging.getLogger(__name__)


async def run_cleanup_cycle(service: FileTransactionService) -> dict:
    """One pass: process a batch of pending names, then archive old resolved ones."""
    processed = await service.process_cleanup_queue(settings.CLEANUP_BATCH_SIZE)
    archived = await service.cleanup_queue.archive_old_processed(settings.CLEANUP_ARCHIVE_DAYS)

    stale = await service.cleanup_queue.get_stale_pending(settings.STALE_PENDING_MINUTES)
    if stale:
        logger.warning(
            f"{len(stale)} cleanup item(s) pending for more than "
            f"{settings.STALE_PENDING_MINUTES} minutes: {', '.join(e.name for e in stale[:10])}"
        )
    return {"processed": processed, "archived": archived, "stale": len(stale)}


async def worker_loop(service: FileTransactionService, interval: float):
    """Main worker loop. Runs a cleanup cycle every `interval` seconds."""
    logger.info(f"Cleanup worker started (interval={interval}s)")
    while True:
        try:
            result = await run_cleanup_cycle(service)
            if result["processed"] or result["archived"]:
                logger.info(f"Cleanup cycle: {result}")
        except Exception as e:
            logger.error(f"Cleanup worker error: {e}")

        await asyncio.sleep(interval)
