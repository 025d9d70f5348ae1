"""SQLAlchemy declarative base and shared column helpers for all ORM models.

Provides:
- Base: the DeclarativeBase subclass all models inherit from
- JSONType: JSON column type that becomes JSONB on PostgreSQL
- utcnow(): timezone-aware default used by every timestamp column
- TimestampMixin: created_at / updated_at columns

Column types are chosen so that the schema also materialises on SQLite,
which the unit tests use through aiosqlite.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

#: JSON column type.  Rendered as JSONB on PostgreSQL and plain JSON elsewhere.
#: Python ``None`` is stored as SQL NULL, never as the JSON literal ``null``,
#: so ``column.is_(None)`` filters match rows written through the ORM.
JSONType = sa.JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


class Base(DeclarativeBase):
    """Shared declarative base for all pipeline models."""

    # Native UUID on PostgreSQL, CHAR(32) on backends without one.
    type_annotation_map = {
        uuid.UUID: sa.Uuid(as_uuid=True),
    }


class TimestampMixin:
    """Adds created_at and updated_at columns.

    Defaults are applied by the ORM rather than the server so that rows
    created in tests carry the same timezone-aware values as production.
    """

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
