"""
Async DB helpers for the schedule store.
Uses SQLAlchemy 2.0 with either aiosqlite (embedded file) or asyncpg (hosted
Postgres) – no raw SQL strings in app code.
"""

from __future__ import annotations

import functools
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Sequence, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy import delete as sa_delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncSession
)

from app.errors import StoreError, ValidationError
from app.types.schedule_contract import (
    ItemKind, LinkPostIn, LinkPostView, ScheduledItemView, StatusChangeIn, StatusChangeView,
)
from config import settings
from db.models import Base, LinkPost, StatusChange

_LOGGER = logging.getLogger(__name__)

ScheduledItem = Union[LinkPost, StatusChange]

_MODELS: dict[ItemKind, type[LinkPost] | type[StatusChange]] = {
    ItemKind.LINK: LinkPost,
    ItemKind.STATUS: StatusChange,
}

# ──────────────────────────────────────────────────────────────────────
# 1. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _build_url() -> str:
    """Hosted Postgres when DATABASE_URL is set, embedded SQLite otherwise."""
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        path = os.getenv("SQLITE_PATH", settings.SQLITE_PATH)
        return f"sqlite+aiosqlite:///{path}"
    if url.startswith("sqlite") and "+aiosqlite" not in url:
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if url.startswith("postgres") and "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url


def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            _engine = create_async_engine(url)
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5, pool_pre_ping=True)
        _LOGGER.info("Schedule store using %s", _engine.url.render_as_string(hide_password=True))
    return _engine


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async with _session_maker() as session:
        yield session


def _store_op(fn):
    """Re-raise any SQLAlchemy or connection failure as StoreError.

    asyncpg connect errors (refused, timed out, DNS) are OSError subclasses
    that SQLAlchemy lets through unwrapped.
    """
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreError(f"{fn.__name__} failed: {exc}") from exc
    return wrapper


# ──────────────────────────────────────────────────────────────────────
# 2. DDL helper (embedded DB bootstrap; hosted DBs use Alembic)
# ──────────────────────────────────────────────────────────────────────
@_store_op
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 3. Inserts
# ──────────────────────────────────────────────────────────────────────

def _validate(model: type[BaseModel], **fields) -> BaseModel:
    try:
        return model.model_validate(fields)
    except PydanticValidationError as exc:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ValidationError("; ".join(problems), details=problems) from exc


@_store_op
async def _insert(row: ScheduledItem) -> int:
    async with get_session() as s:
        s.add(row)
        await s.commit()
        return row.id


async def insert_link_post(
    chat_id: str | None,
    link: str | None,
    description: str | None = None,
    scheduled_at: datetime | str | None = None,
) -> int:
    data = _validate(
        LinkPostIn, chat_id=chat_id, link=link, description=description, scheduled_at=scheduled_at
    )
    rid = await _insert(LinkPost(**data.model_dump()))
    _LOGGER.info("Link post %s scheduled for %s at %s", rid, data.chat_id, data.scheduled_at.isoformat())
    return rid


async def insert_status_change(
    chat_id: str | None,
    action: str | None,
    message: str | None = None,
    scheduled_at: datetime | str | None = None,
) -> int:
    data = _validate(
        StatusChangeIn, chat_id=chat_id, action=action, message=message, scheduled_at=scheduled_at
    )
    rid = await _insert(StatusChange(**data.model_dump()))
    _LOGGER.info(
        "Status change %s (%s) scheduled for %s at %s",
        rid, data.action, data.chat_id, data.scheduled_at.isoformat(),
    )
    return rid


# ──────────────────────────────────────────────────────────────────────
# 4. Due selection / execution
# ──────────────────────────────────────────────────────────────────────
@_store_op
async def list_due(kind: ItemKind, as_of: datetime) -> Sequence[ScheduledItem]:
    """Pending items of *kind* whose time is at or before *as_of*."""
    model = _MODELS[ItemKind(kind)]
    async with get_session() as s:
        stmt = (
            select(model)
            .where(model.executed.is_(False), model.scheduled_at <= as_of)
            .order_by(model.scheduled_at, model.id)
        )
        res = await s.execute(stmt)
        return res.scalars().all()


@_store_op
async def mark_executed(kind: ItemKind, item_id: int) -> bool:
    """Flip ``executed`` once. Returns False when it was already set (or gone)."""
    model = _MODELS[ItemKind(kind)]
    async with get_session() as s:
        res = await s.execute(
            update(model)
            .where(model.id == item_id, model.executed.is_(False))
            .values(executed=True, executed_at=datetime.now(timezone.utc))
        )
        await s.commit()
        return res.rowcount > 0


# ──────────────────────────────────────────────────────────────────────
# 5. Listing / lookup / deletion
# ──────────────────────────────────────────────────────────────────────
@_store_op
async def get_item(kind: ItemKind, item_id: int) -> ScheduledItem | None:
    async with get_session() as s:
        return await s.get(_MODELS[ItemKind(kind)], item_id)


@_store_op
async def list_all() -> list[ScheduledItemView]:
    async with get_session() as s:
        links = (await s.execute(select(LinkPost))).scalars().all()
        statuses = (await s.execute(select(StatusChange))).scalars().all()
    items: list[ScheduledItemView] = [LinkPostView.model_validate(r) for r in links]
    items += [StatusChangeView.model_validate(r) for r in statuses]
    items.sort(key=lambda i: (i.scheduled_at, i.kind, i.id))
    return items


@_store_op
async def delete(kind: ItemKind, item_id: int) -> int:
    """Remove one row; 0 affected rows is not an error."""
    model = _MODELS[ItemKind(kind)]
    async with get_session() as s:
        res = await s.execute(sa_delete(model).where(model.id == item_id))
        await s.commit()
        return res.rowcount


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
