"""Metadata store: FileRecord rows keyed by the generated file name.

Each method opens its own short-lived session so the store can be shared by
concurrent requests; the connection pool provides the isolation. Backend
exceptions are translated into filekeeper errors here so the coordinator only
ever sees the typed taxonomy.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from filekeeper.errors import MetadataConflict, MetadataStoreError, NotFound
from filekeeper.models.file_record import FileRecord

logger = logging.getLogger(__name__)

# Columns that may be changed after creation. Anything else is refused before
# a statement is built.
UPDATABLE_FIELDS = frozenset({"display_name", "storage_path", "media_type", "byte_size"})


class FileMetadataStore:
    """CRUD and aggregate queries over the files table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        *,
        name: str,
        display_name: str,
        storage_path: str,
        media_type: str,
        byte_size: int,
        created_at: datetime | None = None,
    ) -> FileRecord:
        """Insert a record. A duplicate name raises MetadataConflict.

        `created_at` is only passed when restoring a previously deleted row.
        A MetadataStoreError leaves the outcome unknown: the commit may have
        reached the database before the error surfaced.
        """
        now = datetime.now(timezone.utc)
        # Timestamps are set here so nothing has to be read back after commit
        record = FileRecord(
            name=name,
            display_name=display_name,
            storage_path=storage_path,
            media_type=media_type,
            byte_size=byte_size,
            created_at=created_at or now,
            updated_at=now,
        )

        try:
            async with self._session_factory() as db:
                db.add(record)
                await db.commit()
        except IntegrityError as e:
            logger.error(f"Duplicate metadata record for {name}: {e}")
            raise MetadataConflict("File with this name already exists") from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to create metadata for {name}: {e}")
            raise MetadataStoreError(f"Database error: {e}") from e

        logger.info(f"Metadata record created: {name}")
        return record

    async def find_by_name(self, name: str) -> FileRecord | None:
        try:
            async with self._session_factory() as db:
                return await db.get(FileRecord, name)
        except SQLAlchemyError as e:
            logger.error(f"Failed to find metadata for {name}: {e}")
            raise MetadataStoreError(f"Database error: {e}") from e

    async def delete(self, name: str) -> FileRecord:
        """Delete a record and return it as it was. Missing row raises NotFound."""
        try:
            async with self._session_factory() as db:
                record = await db.get(FileRecord, name)
                if record is None:
                    raise NotFound(f"No file found with name: {name}")
                await db.delete(record)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete metadata for {name}: {e}")
            raise MetadataStoreError(f"Database error: {e}") from e

        logger.info(f"Metadata record deleted: {name}")
        return record

    async def update(self, name: str, **fields: Any) -> FileRecord:
        """Update a fixed set of columns. Unknown or empty updates raise ValueError."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        if not fields:
            raise ValueError("No valid fields to update")

        try:
            async with self._session_factory() as db:
                record = await db.get(FileRecord, name)
                if record is None:
                    raise NotFound(f"No file found with name: {name}")
                for key in UPDATABLE_FIELDS.intersection(fields):
                    setattr(record, key, fields[key])
                await db.commit()
                await db.refresh(record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update metadata for {name}: {e}")
            raise MetadataStoreError(f"Database error: {e}") from e

        logger.info(f"Metadata record updated: {name} ({', '.join(sorted(fields))})")
        return record

    async def list_records(self, limit: int = 50, offset: int = 0) -> list[FileRecord]:
        """Records newest first."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(FileRecord)
                    .order_by(desc(FileRecord.created_at), desc(FileRecord.name))
                    .limit(limit)
                    .offset(offset)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Database error: {e}") from e

    async def count(self) -> int:
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(func.count()).select_from(FileRecord))
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Database error: {e}") from e

    async def list_names(self) -> set[str]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(FileRecord.name))
                return set(result.scalars().all())
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Database error: {e}") from e

    async def storage_stats(self) -> list[dict]:
        """Count, total and average size grouped by media type."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(
                        FileRecord.media_type,
                        func.count().label("file_count"),
                        func.coalesce(func.sum(FileRecord.byte_size), 0).label("total_size"),
                        func.avg(FileRecord.byte_size).label("average_size"),
                    )
                    .group_by(FileRecord.media_type)
                    .order_by(FileRecord.media_type)
                )
                return [
                    {
                        "media_type": row.media_type,
                        "count": int(row.file_count),
                        "total_size": int(row.total_size),
                        "average_size": round(float(row.average_size or 0)),
                    }
                    for row in result
                ]
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Database error: {e}") from e

