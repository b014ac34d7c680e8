"""Import all models so SQLAlchemy metadata knows about them."""
from filekeeper.models.base import Base
from filekeeper.models.file_record import FileRecord
from filekeeper.models.cleanup_entry import CleanupEntry

__all__ = ["Base", "FileRecord", "CleanupEntry"]
