"""Upload verification. Nothing the client declares is trusted on its own.

A file is accepted only when independently derived signals agree: the
extension must be allow-listed, the media type inferred from that extension
must be one the allow-list expects, and the leading bytes must carry that
type's magic number. The two cross-checks fail with the same vague message so
a caller cannot learn which one tripped.
"""
import logging
import mimetypes
from dataclasses import dataclass

from filekeeper.config import settings
from filekeeper.errors import ValidationRejected

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
UNTRUSTED_MESSAGE = "File content is not trusted"

# Magic-number prefixes by media type. An empty list means the type has no
# reliable signature and the byte check is skipped.
FILE_SIGNATURES: dict[str, list[bytes]] = {
    "image/jpeg": [b"\xff\xd8\xff"],
    "image/png": [b"\x89PNG"],
    "image/gif": [b"GIF8"],
    "image/webp": [b"RIFF"],
    "application/pdf": [b"%PDF"],
    "text/plain": [],
}

mimetypes.add_type("image/webp", ".webp")


@dataclass(frozen=True)
class UploadDescriptor:
    """A verified upload. The only input the transaction service accepts."""
    display_name: str
    extension: str
    media_type: str
    data: bytes

    @property
    def byte_size(self) -> int:
        return len(self.data)


def extract_extension(filename: str) -> str:
    """Lower-cased last `.`-suffix including the dot."""
    last_dot = filename.rfind(".")
    if last_dot == -1 or last_dot == len(filename) - 1:
        raise ValidationRejected("File must have a valid extension")
    return filename[last_dot:].lower()


def infer_media_type(extension: str) -> str | None:
    """Media type from the standard extension table, never from client headers."""
    media_type, _ = mimetypes.guess_type(f"file{extension}", strict=False)
    return media_type


class FileValidationService:
    """Runs the verification gates in order; the first failure aborts."""

    def __init__(
        self,
        allowed_types: dict[str, list[str]] | None = None,
        max_file_size: int | None = None,
        signatures: dict[str, list[bytes]] | None = None,
    ):
        self.allowed_types = {
            ext.lower(): list(types)
            for ext, types in (allowed_types or settings.ALLOWED_FILE_TYPES).items()
        }
        self.max_file_size = max_file_size or settings.MAX_FILE_SIZE
        self.signatures = signatures if signatures is not None else FILE_SIGNATURES

    def allowed_extensions(self) -> list[str]:
        return list(self.allowed_types)

    def verify(self, raw_name: str, declared_size: int | None, data: bytes) -> UploadDescriptor:
        logger.info(f"Starting validation for file: {raw_name!r}")

        self.check_size(declared_size, len(data))
        extension = self.check_extension(raw_name)
        media_type = self.check_media_type(extension)
        self.cross_validate(extension, media_type)
        self.check_signature(data, media_type)

        logger.info(f"File validation passed: {raw_name!r} ({media_type}, {len(data)} bytes)")
        return UploadDescriptor(
            display_name=raw_name,
            extension=extension,
            media_type=media_type,
            data=data,
        )

    def check_size(self, declared_size: int | None, actual_size: int) -> None:
        size = max(actual_size, declared_size or 0)
        if size > self.max_file_size:
            size_mb = size / BYTES_PER_MB
            max_mb = self.max_file_size / BYTES_PER_MB
            logger.warning(f"File size {size_mb:.2f}MB exceeds {max_mb:.2f}MB limit")
            raise ValidationRejected(
                f"File size {size_mb:.2f}MB exceeds maximum allowed size of {max_mb:.2f}MB",
                status_code=413,
            )

    def check_extension(self, raw_name: str) -> str:
        extension = extract_extension(raw_name or "")
        if extension not in self.allowed_types:
            logger.warning(f"Extension not allowed: {extension}")
            raise ValidationRejected(
                f"File extension not allowed. Allowed extensions: {', '.join(self.allowed_types)}"
            )
        return extension

    def check_media_type(self, extension: str) -> str:
        media_type = infer_media_type(extension)
        if not media_type:
            logger.warning(f"Could not determine media type for extension {extension}")
            raise ValidationRejected("Could not determine file type")
        return media_type

    def cross_validate(self, extension: str, media_type: str) -> None:
        if media_type not in self.allowed_types[extension]:
            logger.warning(f"Extension/media type mismatch: {extension} vs {media_type}")
            raise ValidationRejected(UNTRUSTED_MESSAGE)

    def sniff(self, data: bytes) -> str | None:
        """Media type whose registered signature prefixes `data`, if any."""
        for media_type, signatures in self.signatures.items():
            if any(data.startswith(signature) for signature in signatures):
                return media_type
        return None

    def check_signature(self, data: bytes, media_type: str) -> None:
        signatures = self.signatures.get(media_type)
        if not signatures:
            # Signature-less types (plain text) must not be a known binary format in disguise
            disguised_as = self.sniff(data)
            if disguised_as is not None:
                logger.warning(f"{media_type} upload carries a {disguised_as} signature")
                raise ValidationRejected(UNTRUSTED_MESSAGE)
            logger.info(f"No signature registered for {media_type}, skipping byte check")
            return
        if not any(data.startswith(signature) for signature in signatures):
            logger.warning(f"Signature check failed for media type {media_type}")
            raise ValidationRejected(UNTRUSTED_MESSAGE)


file_validator = FileValidationService()


def verify_upload(raw_name: str, declared_size: int | None, data: bytes) -> UploadDescriptor:
    """Shortcut for the default validator built from settings."""
    return file_validator.verify(raw_name, declared_size, data)
