import asyncio
from datetime import datetime, timedelta, timezone

import pytest

import db
from app.types.schedule_contract import ItemKind
from app.workers import dispatcher as dispatcher_worker


class FakeLock:
    def __init__(self, free=True):
        self.free = free
        self.released = False

    def acquire(self, blocking=True):
        return self.free

    def release(self):
        self.released = True


async def _seed():
    await db.create_all()
    rid = await db.insert_link_post("g1", "http://x", "Promo", datetime.now(timezone.utc) - timedelta(minutes=1))
    await db.dispose_engine()
    return rid


async def _load(rid):
    try:
        return await db.get_item(ItemKind.LINK, rid)
    finally:
        await db.dispose_engine()


@pytest.fixture
def session(fake_session, monkeypatch):
    monkeypatch.setattr(dispatcher_worker, "build_chat_session", lambda: fake_session)
    return fake_session


def test_dispatch_due_runs_a_tick(sqlite_url, session, monkeypatch):
    lock = FakeLock()
    monkeypatch.setattr(dispatcher_worker, "_tick_lock", lambda: lock)
    rid = asyncio.run(_seed())

    result = dispatcher_worker.dispatch_due.apply().get()

    assert result["executed"] == [f"link:{rid}"]
    assert session.calls == [("send_message", "g1", "*Promo*\n\nhttp://x")]
    assert session.closed
    assert lock.released
    assert asyncio.run(_load(rid)).executed is True


def test_dispatch_due_skips_while_previous_tick_holds_lock(sqlite_url, session, monkeypatch):
    monkeypatch.setattr(dispatcher_worker, "_tick_lock", lambda: FakeLock(free=False))
    rid = asyncio.run(_seed())

    result = dispatcher_worker.dispatch_due.apply().get()

    assert result == {"skipped": "previous tick still running"}
    assert session.calls == []
    assert asyncio.run(_load(rid)).executed is False
