"""Typed failures raised by the stores and the transaction coordinator.

Every error carries an HTTP status and a message that is safe to show to a
client. Server-side errors (status >= 500) are rendered with a generic message
by the API layer; the full text stays in the logs.
"""


class FileServiceError(Exception):
    """Base class for all filekeeper failures."""

    status_code: int = 500
    severity: str = "error"

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    @property
    def is_client_error(self) -> bool:
        return self.status_code < 500


class ValidationRejected(FileServiceError):
    """Upload failed size, extension, type or signature checks."""
    status_code = 400


class TransformFailed(FileServiceError):
    """The image transform could not process the input."""
    status_code = 422


class StorageWriteFailed(FileServiceError):
    """Writing bytes to the content store failed."""
    status_code = 500


class StorageDeleteFailed(StorageWriteFailed):
    """Removing a blob failed for a reason other than it being absent."""
    pass


class StorageReadFailed(FileServiceError):
    status_code = 500


class MetadataStoreError(FileServiceError):
    """Any database failure that is not a uniqueness violation."""
    status_code = 500


class MetadataConflict(FileServiceError):
    """A record with the same name already exists."""
    status_code = 409


class NotFound(FileServiceError):
    status_code = 404


class CriticalInconsistency(FileServiceError):
    """A compensating action failed; the name has been sent to the cleanup queue.

    Always rendered without details so operators can tell it apart from
    ordinary server errors by severity alone.
    """
    status_code = 500
    severity = "critical"
