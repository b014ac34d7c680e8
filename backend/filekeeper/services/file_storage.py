"""Content store: file bytes on local disk, keyed by generated name."""
import asyncio
import logging
import time
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os

from filekeeper.config import settings
from filekeeper.errors import NotFound, StorageDeleteFailed, StorageReadFailed, StorageWriteFailed

logger = logging.getLogger(__name__)


class FileStorageService:
    """Handles blob read/write/delete under a single upload directory.

    Every operation is bounded by ``timeout`` seconds; a timeout is reported
    the same way as any other I/O failure of that operation.
    """

    def __init__(
        self,
        base_path: str | Path | None = None,
        url_prefix: str | None = None,
        timeout: float | None = None,
    ):
        self.base_path = Path(base_path or settings.FILE_STORAGE_PATH)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.url_prefix = (url_prefix or settings.UPLOADS_URL_PREFIX).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.STORAGE_TIMEOUT_SECONDS

    @staticmethod
    def generate_unique_name(extension: str) -> str:
        """Time component plus a random UUID, keeping the final extension."""
        name = f"{int(time.time() * 1000)}_{uuid.uuid4().hex}{extension}"
        logger.info(f"Generated unique filename: {name}")
        return name

    def relative_path(self, name: str) -> str:
        """Externally reachable path for a stored file. Pure, no I/O."""
        return f"{self.url_prefix}/{name}"

    def full_path(self, name: str) -> Path:
        """Resolve a name to its on-disk path, refusing anything but a plain file name."""
        if not name or name in (".", "..") or Path(name).name != name or "\\" in name:
            raise NotFound(f"No file found with name: {name}")
        return self.base_path / name

    async def save(self, name: str, data: bytes) -> int:
        """Write bytes under `name`. Returns the number of bytes on disk."""
        path = self.full_path(name)
        try:
            size = await asyncio.wait_for(self._write(path, data), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Failed to save file {name}: {e!r}")
            await self._remove_partial(path)
            raise StorageWriteFailed(f"File storage failed: {e!r}") from e

        logger.info(f"File saved: {name} ({size} bytes)")
        return size

    async def _write(self, path: Path, data: bytes) -> int:
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
        stat = await aiofiles.os.stat(path)
        if stat.st_size != len(data):
            raise ValueError(f"File size mismatch after write: {stat.st_size} != {len(data)}")
        return stat.st_size

    async def _remove_partial(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to clean up partial file {path.name}: {e}")

    async def read(self, name: str) -> bytes:
        path = self.full_path(name)
        try:
            return await asyncio.wait_for(self._read(path), timeout=self.timeout)
        except FileNotFoundError as e:
            raise NotFound(f"No file found with name: {name}") from e
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to read file {name}: {e!r}")
            raise StorageReadFailed(f"File read failed: {e!r}") from e

    async def _read(self, path: Path) -> bytes:
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def delete(self, name: str) -> bool:
        """Delete a blob.

        Returns False when the blob was already absent, which callers treat as
        already deleted. Any other failure raises StorageDeleteFailed.
        """
        path = self.full_path(name)
        try:
            await asyncio.wait_for(aiofiles.os.remove(path), timeout=self.timeout)
        except FileNotFoundError:
            logger.warning(f"File not found for deletion: {name}")
            return False
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to delete file {name}: {e!r}")
            raise StorageDeleteFailed(f"File deletion failed: {e!r}") from e

        logger.info(f"File deleted: {name}")
        return True

    async def exists(self, name: str) -> bool:
        try:
            return await asyncio.wait_for(
                aiofiles.os.path.isfile(self.full_path(name)), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise StorageReadFailed(f"File existence check timed out: {name}") from e

    async def age_minutes(self, name: str) -> float:
        stat = await aiofiles.os.stat(self.full_path(name))
        return (time.time() - stat.st_mtime) / 60

    def list_names(self) -> list[str]:
        """All stored blob names, skipping hidden files such as .gitkeep."""
        if not self.base_path.exists():
            return []
        return sorted(
            p.name for p in self.base_path.iterdir()
            if p.is_file() and not p.name.startswith(".")
        )


file_storage = FileStorageService()
