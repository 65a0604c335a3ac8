"""
SQLAlchemy ORM models backing the durable key-value store.

Tables: ``key_value_entries``.
"""

from datetime import UTC, datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from agrivoice.services.storage.database import Base


class KeyValueEntry(Base):
    """One string value stored under a unique key."""

    __tablename__ = "key_value_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, default="")
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return f"<KeyValueEntry key={self.key!r}>"
