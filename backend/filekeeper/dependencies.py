"""Default store wiring for the API.

Routes depend on ``get_transaction_service`` rather than importing the
singletons, so tests can swap in stores bound to a throwaway database with
``app.dependency_overrides``.
"""
from filekeeper.config import settings
from filekeeper.database import async_session
from filekeeper.services.cleanup_queue import CleanupQueueStore
from filekeeper.services.file_metadata import FileMetadataStore
from filekeeper.services.file_storage import file_storage
from filekeeper.services.file_validation import FileValidationService, file_validator
from filekeeper.services.transaction import FileTransactionService

transaction_service = FileTransactionService(
    storage=file_storage,
    metadata=FileMetadataStore(async_session),
    cleanup_queue=CleanupQueueStore(async_session),
    orphan_grace_minutes=settings.ORPHAN_GRACE_MINUTES,
)


def get_transaction_service() -> FileTransactionService:
    return transaction_service


def get_file_validator() -> FileValidationService:
    return file_validator
