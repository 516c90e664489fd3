from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text, false
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """TIMESTAMPTZ on Postgres, UTC text on SQLite; always aware on the way out.

    SQLite has no timezone support, so values are stored as naive UTC and the
    tzinfo is re-attached when read. Naive values are rejected on write.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("scheduled timestamps must be timezone-aware")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    pass


class LinkPost(Base):
    __tablename__ = "link_posts"

    id:           Mapped[int]             = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id:      Mapped[str]             = mapped_column(String(255))
    link:         Mapped[str]             = mapped_column(Text)
    description:  Mapped[str | None]      = mapped_column(Text, nullable=True)
    scheduled_at: Mapped[datetime]        = mapped_column(UTCDateTime(), index=True)
    executed:     Mapped[bool]            = mapped_column(Boolean, default=False, server_default=false())
    executed_at:  Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at:   Mapped[datetime]        = mapped_column(UTCDateTime(), default=_utcnow)


class StatusChange(Base):
    __tablename__ = "status_changes"

    id:           Mapped[int]             = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id:      Mapped[str]             = mapped_column(String(255))
    action:       Mapped[str]             = mapped_column(String(16))  # "open" | "close"
    message:      Mapped[str | None]      = mapped_column(Text, nullable=True)
    scheduled_at: Mapped[datetime]        = mapped_column(UTCDateTime(), index=True)
    executed:     Mapped[bool]            = mapped_column(Boolean, default=False, server_default=false())
    executed_at:  Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at:   Mapped[datetime]        = mapped_column(UTCDateTime(), default=_utcnow)
