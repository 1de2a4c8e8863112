"""SQLAlchemy base classes and common mixins.

Defines the declarative base and the timestamp mixin shared by mutable
tables. Append-only tables declare their own created_at.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Auto-increment surrogate key. SQLite only auto-increments INTEGER PRIMARY KEY.
BIGINT_PK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class TimestampMixin:
    """Mixin that adds created_at and updated_at columns.

    Attributes:
        created_at: Timestamp when the record was created. Set automatically
            by the database on insert.
        updated_at: Timestamp when the record was last modified. Updated
            automatically on each ORM update.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps read back from SQLite.

    PostgreSQL returns aware datetimes for timestamptz columns; SQLite
    stores them as naive UTC strings.

    Args:
        value: Datetime read from the database.

    Returns:
        Timezone-aware datetime.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
