"""Upload/delete coordination across the content store and the metadata store.

The two stores share no transaction, so each protocol is a saga: steps run in
a fixed order and every step that can fail after another has succeeded has a
defined compensating action. When the compensation itself fails, the name is
put on the cleanup queue before the error reaches the caller, and
`process_cleanup_queue` later drives both stores back into agreement.

    upload:  START -> STORED (blob written) -> RECORDED (row inserted) -> DONE
             row insert fails  => delete blob (and any row the failed insert may have
                                  committed); either delete fails => enqueue
    delete:  START -> LOOKED_UP -> UNRECORDED (row deleted) -> DONE
             blob delete fails => re-insert row; re-insert fails => enqueue + critical

Name collisions are not retried: two uploads that generate the same name
surface as a MetadataConflict on the second insert and follow the ordinary
compensation path.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from filekeeper.errors import CriticalInconsistency, MetadataConflict, NotFound, ValidationRejected
from filekeeper.models.file_record import FileRecord
from filekeeper.services.cleanup_queue import CleanupQueueStore
from filekeeper.services.file_metadata import FileMetadataStore
from filekeeper.services.file_storage import FileStorageService
from filekeeper.services.file_validation import UploadDescriptor, infer_media_type
from filekeeper.services.image_transform import TransformOptions, is_transformable, transform_image

logger = logging.getLogger(__name__)

Transform = Callable[[bytes, str, Optional[TransformOptions]], Awaitable[tuple[bytes, str]]]


class UploadState(str, enum.Enum):
    START = "start"
    STORED = "stored"
    RECORDED = "recorded"
    DONE = "done"


class DeleteState(str, enum.Enum):
    START = "start"
    LOOKED_UP = "looked_up"
    UNRECORDED = "unrecorded"
    DONE = "done"


@dataclass
class DeleteResult:
    name: str
    display_name: str
    deleted_at: datetime
    blob_was_present: bool


@dataclass
class OrphanReport:
    orphans: list[str]
    deleted: int
    dry_run: bool


def _restorable_fields(record: FileRecord) -> dict:
    return {
        "name": record.name,
        "display_name": record.display_name,
        "storage_path": record.storage_path,
        "media_type": record.media_type,
        "byte_size": record.byte_size,
        "created_at": record.created_at,
    }


class FileTransactionService:
    """Runs the upload and delete sagas over injected store handles."""

    def __init__(
        self,
        storage: FileStorageService,
        metadata: FileMetadataStore,
        cleanup_queue: CleanupQueueStore,
        transform: Transform = transform_image,
        orphan_grace_minutes: int = 10,
    ):
        self.storage = storage
        self.metadata = metadata
        self.cleanup_queue = cleanup_queue
        self.transform = transform
        self.orphan_grace_minutes = orphan_grace_minutes

    # ── Upload ───────────────────────────────────────────────────

    async def upload(
        self,
        descriptor: UploadDescriptor,
        options: TransformOptions | None = None,
    ) -> FileRecord:
        state = UploadState.START
        logger.info(f"Starting upload transaction for {descriptor.display_name!r}")

        data, extension, media_type = await self._prepare(descriptor, options)
        name = self.storage.generate_unique_name(extension)

        # STORED: nothing to roll back if this fails
        await self.storage.save(name, data)
        state = UploadState.STORED

        try:
            record = await self.metadata.create(
                name=name,
                display_name=descriptor.display_name,
                storage_path=self.storage.relative_path(name),
                media_type=media_type,
                byte_size=len(data),
            )
        except Exception as e:
            logger.error(f"Upload transaction failed in state {state.value} for {name}: {e}")
            # Only a uniqueness violation proves the row was never written
            await self._compensate_upload(name, row_may_exist=not isinstance(e, MetadataConflict))
            raise
        state = UploadState.RECORDED
        logger.info(f"Upload transaction {state.value}: {name} ({len(data)} bytes)")

        state = UploadState.DONE
        return record

    async def _prepare(
        self,
        descriptor: UploadDescriptor,
        options: TransformOptions | None,
    ) -> tuple[bytes, str, str]:
        """Apply the optional transform before any store is touched."""
        if options is None or not options.has_transformation:
            return descriptor.data, descriptor.extension, descriptor.media_type

        if not is_transformable(descriptor.extension):
            raise ValidationRejected(
                f"File type {descriptor.media_type} does not support transformations"
            )
        data, extension = await self.transform(descriptor.data, descriptor.extension, options)
        if options.legacy_format_param:
            logger.warning("Used legacy 'type' parameter, consider using 'convert'")
        media_type = infer_media_type(extension) or descriptor.media_type
        return data, extension, media_type

    async def _compensate_upload(self, name: str, row_may_exist: bool = False) -> None:
        """Remove the blob written for a failed upload; queue it if that fails too.

        When the insert failed in a way that may still have committed, the row
        is removed as well, and the name is queued if that cannot be confirmed.
        """
        logger.warning(f"Rolling back upload: deleting blob {name}")
        try:
            await self.storage.delete(name)
        except Exception as e:
            logger.error(f"Upload rollback failed for {name}: {e}")
            await self._enqueue(name)
            return

        if row_may_exist:
            try:
                await self.metadata.delete(name)
                logger.warning(f"Removed metadata committed by failed upload: {name}")
            except NotFound:
                pass
            except Exception as e:
                logger.error(f"Could not confirm metadata rollback for {name}: {e}")
                await self._enqueue(name)
                return
        logger.info(f"Upload rollback completed for {name}")

    # ── Delete ───────────────────────────────────────────────────

    async def delete(self, name: str) -> DeleteResult:
        state = DeleteState.START
        logger.info(f"Starting delete transaction for {name}")

        original = await self.metadata.find_by_name(name)
        if original is None:
            raise NotFound(f"No file found with name: {name}")
        state = DeleteState.LOOKED_UP

        # Failure here changes nothing; let it propagate
        await self.metadata.delete(name)
        state = DeleteState.UNRECORDED

        try:
            blob_was_present = await self.storage.delete(name)
        except Exception as e:
            logger.error(f"Delete transaction failed in state {state.value} for {name}: {e}")
            await self._compensate_delete(original, e)
            raise

        if not blob_was_present:
            logger.warning(f"Blob {name} was already absent; metadata removed")

        state = DeleteState.DONE
        logger.info(f"Delete transaction {state.value}: {name}")
        return DeleteResult(
            name=name,
            display_name=original.display_name,
            deleted_at=datetime.now(timezone.utc),
            blob_was_present=blob_was_present,
        )

    async def _compensate_delete(self, original: FileRecord, error: Exception) -> None:
        """Restore the deleted row. If that fails the stores disagree: queue and escalate."""
        logger.warning(f"Rolling back delete: restoring metadata for {original.name}")
        try:
            await self.metadata.create(**_restorable_fields(original))
        except Exception as restore_error:
            logger.critical(
                f"Delete rollback failed for {original.name}: metadata removed, blob remains "
                f"({error}; restore failed with {restore_error})"
            )
            await self._enqueue(original.name)
            raise CriticalInconsistency(
                "Critical system failure during rollback. The file has been queued for reconciliation."
            ) from error
        logger.info(f"Delete rollback completed for {original.name}")

    # ── Cleanup queue ────────────────────────────────────────────

    async def _enqueue(self, name: str) -> None:
        """Last line of defence: a failed enqueue is logged, never escalated."""
        try:
            await self.cleanup_queue.add(name)
        except Exception as e:
            logger.critical(f"Failed to add {name} to cleanup queue: {e}")
            return
        logger.info(f"Queued {name} for reconciliation")

    async def process_cleanup_queue(self, batch_size: int = 100) -> int:
        """Re-derive the true state of each pending name and converge the stores.

        Returns the number of entries processed without error. Entries whose
        metadata exists but whose bytes are gone stay unresolved for an operator.
        """
        entries = await self.cleanup_queue.get_pending(batch_size)
        processed = 0

        for entry in entries:
            try:
                resolved, detail = await self._reconcile(entry.name)
                await self.cleanup_queue.mark_processed(entry.name, resolved, detail)
                processed += 1
            except Exception as e:
                logger.error(f"Failed to process cleanup item {entry.name}: {e}")
                try:
                    await self.cleanup_queue.mark_processed(entry.name, False, f"Processing error: {e}")
                except Exception as mark_error:
                    logger.error(f"Failed to record processing error for {entry.name}: {mark_error}")

        logger.info(f"Cleanup queue processing completed: {processed}/{len(entries)} items processed")
        return processed

    async def _reconcile(self, name: str) -> tuple[bool, str | None]:
        record = await self.metadata.find_by_name(name)
        blob_exists = await self.storage.exists(name)

        if record is None:
            # Correct end state is "fully deleted"
            if blob_exists:
                await self.storage.delete(name)
                logger.info(f"Removed orphaned blob {name}")
            return True, None

        if not blob_exists:
            logger.warning(f"File {name} missing from disk but present in database")
            return False, "Metadata exists but blob is missing; needs operator attention"

        return True, None

    # ── Orphan sweep ─────────────────────────────────────────────

    async def clean_orphans(self, dry_run: bool = True) -> OrphanReport:
        """Find blobs with no metadata row, skipping ones young enough to be mid-upload."""
        known = await self.metadata.list_names()
        orphans: list[str] = []
        deleted = 0

        for name in await asyncio.to_thread(self.storage.list_names):
            if name in known:
                continue
            try:
                age = await self.storage.age_minutes(name)
            except FileNotFoundError:
                logger.debug(f"Blob vanished during sweep: {name}")
                continue
            if age < self.orphan_grace_minutes:
                logger.debug(f"Skipping recent blob: {name}")
                continue
            orphans.append(name)
            if not dry_run and await self.storage.delete(name):
                deleted += 1

        logger.info(
            f"Found {len(orphans)} orphaned blobs "
            f"({'DRY RUN - not deleted' if dry_run else f'{deleted} deleted'})"
        )
        return OrphanReport(orphans=orphans, deleted=deleted, dry_run=dry_run)
