"""FileRecord model - file metadata (actual bytes live in the content store)."""
from sqlalchemy import String, BigInteger, Index
from sqlalchemy.orm import Mapped, mapped_column
from filekeeper.models.base import Base, TimestampMixin


class FileRecord(Base, TimestampMixin):
    __tablename__ = "files"

    # Generated by the content store; also the blob's file name on disk
    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    # Client-supplied original name, untrusted, for display only
    display_name: Mapped[str] = mapped_column(String(500), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    media_type: Mapped[str] = mapped_column(String(100), nullable=False)
    byte_size: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_files_media_type", "media_type"),
    )
