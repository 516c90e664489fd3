"""Celery beat driver for the tick handler.

Each run gets a fresh event loop through ``asyncio.run``, so the chat session
client and the DB engine are created and disposed inside that run. A Redis
lock keeps two ticks from overlapping when beat fires while the previous run
is still going (slow gateway, large backlog).
"""

from __future__ import annotations

import asyncio
import logging

import redis
from redis.exceptions import LockError, RedisError

import db
from app.celery_app import BROKER_URL, celery_app
from app.services.chat_session import build_chat_session
from app.services.dispatcher import run_tick
from config import settings

_LOGGER = logging.getLogger(__name__)

TICK_LOCK_NAME = "chat_scheduler:tick-lock"


def _tick_lock():
    client = redis.Redis.from_url(BROKER_URL)
    return client.lock(TICK_LOCK_NAME, timeout=settings.TICK_LOCK_TIMEOUT)


async def _run() -> dict:
    session = build_chat_session()
    try:
        report = await run_tick(session)
        return report.summary()
    finally:
        await session.aclose()
        await db.dispose_engine()


@celery_app.task(name="app.workers.dispatcher.dispatch_due", bind=True)
def dispatch_due(self):  # noqa: D401
    """Run one tick unless another one still holds the lock."""
    lock = _tick_lock()
    try:
        acquired = lock.acquire(blocking=False)
    except RedisError as exc:
        _LOGGER.error("Tick lock unavailable, skipping tick: %s", exc)
        return {"skipped": f"lock unavailable: {exc}"}
    if not acquired:
        _LOGGER.info("Previous tick still running; skipping")
        return {"skipped": "previous tick still running"}

    try:
        return asyncio.run(_run())
    except Exception as exc:  # noqa: BLE001
        _LOGGER.exception("Tick crashed")
        return {"skipped": f"tick crashed: {exc}"}
    finally:
        try:
            lock.release()
        except LockError:
            _LOGGER.warning("Tick lock expired before release")
