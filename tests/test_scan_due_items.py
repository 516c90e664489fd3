import pytest
from datetime import datetime, timedelta, timezone

import db
from app.scripts import scan_due_items
from app.services.chat_session import SessionState
from app.types.schedule_contract import ItemKind


@pytest.fixture
def session(fake_session, monkeypatch):
    monkeypatch.setattr(scan_due_items, "build_chat_session", lambda: fake_session)
    return fake_session


@pytest.mark.asyncio
async def test_one_shot_tick_dispatches_and_cleans_up(store, session):
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    rid = await db.insert_link_post("g1", "http://x", "Promo", past)
    sid = await db.insert_status_change("g1", "close", scheduled_at=past)

    report = await scan_due_items.main()

    assert report.executed == [(ItemKind.LINK, rid), (ItemKind.STATUS, sid)]
    assert session.calls == [
        ("send_message", "g1", "*Promo*\n\nhttp://x"),
        ("set_admins_only", "g1", True),
    ]
    assert session.closed
    assert db.db._engine is None
    assert (await db.get_item(ItemKind.LINK, rid)).executed is True


@pytest.mark.asyncio
async def test_one_shot_tick_skips_when_session_not_ready(store, session):
    session.state = SessionState.CONNECTING
    rid = await db.insert_link_post("g1", "http://x", scheduled_at=datetime.now(timezone.utc))

    report = await scan_due_items.main()

    assert report.skipped == "session connecting"
    assert session.calls == []
    assert session.closed
    assert (await db.get_item(ItemKind.LINK, rid)).executed is False
