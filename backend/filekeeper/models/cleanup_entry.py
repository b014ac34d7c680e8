"""CleanupEntry model - names whose disk/database state is suspected inconsistent.

A row with resolved=False means neither store can be trusted for that name
until the queue processor has re-checked both.
"""
from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from filekeeper.models.base import Base


class CleanupEntry(Base):
    __tablename__ = "cleanup_queue"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    failed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Last divergence or processing error seen for this name
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_cleanup_queue_pending", "resolved", "failed_at"),
    )
