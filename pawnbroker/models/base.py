from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Numeric, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from pawnbroker.clock import ensure_utc, utcnow


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamps on every backend.

    PostgreSQL stores ``timestamptz``; SQLite hands back naive values, which
    are re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return ensure_utc(value)

    def process_result_value(self, value, dialect):
        return ensure_utc(value)


GUID = Uuid(as_uuid=True)
JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(14, 2)
Percent = Numeric(7, 3)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)
