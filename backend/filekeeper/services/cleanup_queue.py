"""Cleanup queue: durable list of names whose two-store state needs re-checking.

Entries are keyed by name. Adding a name that is already queued refreshes its
failure time and reopens it instead of duplicating it, so concurrent enqueues
of the same name are harmless. Entries are only removed once resolved, either
explicitly or by archival after an age threshold.
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, delete, desc, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from filekeeper.errors import MetadataStoreError
from filekeeper.models.cleanup_entry import CleanupEntry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _upsert_statement(dialect_name: str, name: str, failed_at: datetime):
    """INSERT .. ON CONFLICT (name) DO UPDATE for the session's dialect."""
    insert = postgresql.insert if dialect_name == "postgresql" else sqlite.insert
    return insert(CleanupEntry).values(
        name=name, failed_at=failed_at, resolved=False, detail=None,
    ).on_conflict_do_update(
        index_elements=[CleanupEntry.name],
        set_={"failed_at": failed_at, "resolved": False, "detail": None},
    )


class CleanupQueueStore:
    """Data access for the cleanup_queue table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add(self, name: str) -> CleanupEntry:
        """Queue a name (or refresh it if already queued)."""
        logger.warning(f"Adding to cleanup queue: {name}")
        try:
            async with self._session_factory() as db:
                dialect_name = db.get_bind().dialect.name
                await db.execute(_upsert_statement(dialect_name, name, _utcnow()))
                await db.commit()
                entry = await db.get(CleanupEntry, name, populate_existing=True)
        except SQLAlchemyError as e:
            logger.error(f"Failed to add {name} to cleanup queue: {e}")
            raise MetadataStoreError(f"Database error: {e}") from e
        return entry

    async def find(self, name: str) -> CleanupEntry | None:
        try:
            async with self._session_factory() as db:
                return await db.get(CleanupEntry, name)
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Database error: {e}") from e

    async def get_pending(self, limit: int = 100) -> list[CleanupEntry]:
        """Unresolved entries, oldest failure first."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CleanupEntry)
                    .where(CleanupEntry.resolved.is_(False))
                    .order_by(CleanupEntry.failed_at, CleanupEntry.name)
                    .limit(limit)
                )
                entries = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to get pending cleanup items: {e}")
            raise MetadataStoreError(f"Database error: {e}") from e
        logger.info(f"Found {len(entries)} pending cleanup items")
        return entries

    async def get_all(self, limit: int = 100, offset: int = 0) -> list[CleanupEntry]:
        """Processed and pending entries, newest failure first."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CleanupEntry)
                    .order_by(desc(CleanupEntry.failed_at), CleanupEntry.name)
                    .limit(limit)
                    .offset(offset)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Database error: {e}") from e

    async def mark_processed(self, name: str, resolved: bool, detail: str | None = None) -> bool:
        """Record the outcome of processing an entry. False if the name is not queued."""
        logger.info(f"Marking cleanup item {name} as processed (resolved: {resolved})")
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(CleanupEntry)
                    .where(CleanupEntry.name == name)
                    .values(resolved=resolved, detail=detail)
                )
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark cleanup item {name}: {e}")
            raise MetadataStoreError(f"Database error: {e}") from e

        if result.rowcount == 0:
            logger.warning(f"Cleanup item not found: {name}")
            return False
        return True

    async def remove(self, name: str) -> bool:
        try:
            async with self._session_factory() as db:
                result = await db.execute(delete(CleanupEntry).where(CleanupEntry.name == name))
                await db.commit()
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Database error: {e}") from e

        if result.rowcount == 0:
            logger.warning(f"Cleanup item not found for removal: {name}")
            return False
        logger.info(f"Removed from cleanup queue: {name}")
        return True

    async def get_stats(self) -> dict:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(
                        func.count().label("total_items"),
                        func.coalesce(
                            func.sum(case((CleanupEntry.resolved.is_(False), 1), else_=0)), 0
                        ).label("pending_items"),
                        func.coalesce(
                            func.sum(case((CleanupEntry.resolved.is_(True), 1), else_=0)), 0
                        ).label("processed_items"),
                        func.min(CleanupEntry.failed_at).label("oldest_failure"),
                        func.max(CleanupEntry.failed_at).label("newest_failure"),
                    )
                )
                row = result.one()
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Database error: {e}") from e

        return {
            "total_items": int(row.total_items),
            "pending_items": int(row.pending_items),
            "processed_items": int(row.processed_items),
            "oldest_failure": row.oldest_failure,
            "newest_failure": row.newest_failure,
        }

    async def get_old_processed(self, days_old: int = 30, limit: int = 100) -> list[CleanupEntry]:
        cutoff = _utcnow() - timedelta(days=days_old)
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CleanupEntry)
                    .where(CleanupEntry.resolved.is_(True), CleanupEntry.failed_at < cutoff)
                    .order_by(CleanupEntry.failed_at)
                    .limit(limit)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Database error: {e}") from e

    async def archive_old_processed(self, days_old: int = 30) -> int:
        """Drop resolved entries whose failure is older than `days_old` days."""
        cutoff = _utcnow() - timedelta(days=days_old)
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(CleanupEntry)
                    .where(CleanupEntry.resolved.is_(True), CleanupEntry.failed_at < cutoff)
                )
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to archive old cleanup items: {e}")
            raise MetadataStoreError(f"Database error: {e}") from e

        logger.info(f"Archived {result.rowcount} processed cleanup items older than {days_old} days")
        return result.rowcount

    async def get_stale_pending(self, older_than_minutes: int = 60) -> list[CleanupEntry]:
        """Entries still unresolved long after their failure, for alerting."""
        cutoff = _utcnow() - timedelta(minutes=older_than_minutes)
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CleanupEntry)
                    .where(CleanupEntry.resolved.is_(False), CleanupEntry.failed_at < cutoff)
                    .order_by(CleanupEntry.failed_at)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Database error: {e}") from e
