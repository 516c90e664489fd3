import json

import httpx
import pytest
from tenacity import wait_none

from app.errors import DispatchError
from app.services.auth_state import AuthState, AuthStateTracker
from app.services.chat_session import (
    DevChatSession, GatewayChatSession, SessionState, build_chat_session,
)
from config import settings


def _session(handler):
    client = httpx.AsyncClient(base_url="http://gateway", transport=httpx.MockTransport(handler))
    return GatewayChatSession("http://gateway", client=client)


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(GatewayChatSession._fetch_status.retry, "wait", wait_none())


@pytest.mark.asyncio
async def test_send_message_posts_text():
    seen = []

    def handler(request: httpx.Request):
        seen.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True})

    session = _session(handler)
    await session.send_message("123@g.us", "*Promo*\n\nhttp://x")
    await session.set_admins_only("123@g.us", True)

    assert seen == [
        ("POST", "/chats/123@g.us/messages", {"text": "*Promo*\n\nhttp://x"}),
        ("POST", "/chats/123@g.us/admins-only", {"admins_only": True}),
    ]
    await session.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("code, fragment", [(404, "unknown chat"), (503, "not ready"), (500, "gateway error")])
async def test_gateway_errors_become_dispatch_errors(code, fragment):
    session = _session(lambda request: httpx.Response(code, text="nope"))
    with pytest.raises(DispatchError, match=fragment):
        await session.send_message("x@g.us", "hi")


@pytest.mark.asyncio
async def test_transport_error_on_send_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    session = _session(handler)
    with pytest.raises(DispatchError, match="unreachable"):
        await session.send_message("x@g.us", "hi")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_state_query_retries_transport_errors():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"state": "READY"})

    session = _session(handler)
    assert await session.get_state() is SessionState.READY
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_state_query_gives_up_with_dispatch_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(DispatchError):
        await _session(handler).get_state()


@pytest.mark.asyncio
async def test_unknown_state_is_treated_as_connecting():
    session = _session(lambda request: httpx.Response(200, json={"state": "opening"}))
    assert await session.get_state() is SessionState.CONNECTING


@pytest.mark.asyncio
async def test_start_publishes_pending_qr():
    session = _session(lambda request: httpx.Response(200, json={"state": "authenticating", "qr": "2@abc"}))
    tracker = AuthStateTracker().attach(session)

    await session.start()

    assert tracker.state is AuthState.AWAITING_SCAN
    assert tracker.artifact.value == "2@abc"


@pytest.mark.asyncio
async def test_start_tolerates_unreachable_gateway():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    session = _session(handler)
    tracker = AuthStateTracker().attach(session)
    await session.start()
    assert tracker.state is AuthState.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_list_groups():
    session = _session(lambda request: httpx.Response(200, json=[{"id": "1@g.us", "name": "Promos"}]))
    groups = await session.list_groups()
    assert [(g.id, g.name) for g in groups] == [("1@g.us", "Promos")]


@pytest.mark.asyncio
async def test_chat_id_is_encoded_into_the_route():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request.url.raw_path)
        return httpx.Response(200, json={"ok": True})

    session = _session(handler)
    await session.send_message("a/b?c#d@g.us", "hi")
    await session.set_admins_only("a/b?c#d@g.us", False)

    assert seen == [
        b"/chats/a%2Fb%3Fc%23d@g.us/messages",
        b"/chats/a%2Fb%3Fc%23d@g.us/admins-only",
    ]


@pytest.mark.asyncio
async def test_dev_session_without_gateway_is_not_ready(monkeypatch):
    monkeypatch.setattr(settings, "CHAT_GATEWAY_URL", None)
    monkeypatch.setattr(settings, "CHAT_DEV_DELIVERY", False)
    session = build_chat_session()
    tracker = AuthStateTracker().attach(session)

    await session.start()

    assert isinstance(session, DevChatSession)
    assert await session.get_state() is SessionState.CONNECTING
    assert tracker.state is AuthState.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_dev_delivery_warns_on_every_state_query(monkeypatch, caplog):
    monkeypatch.setattr(settings, "CHAT_GATEWAY_URL", None)
    monkeypatch.setattr(settings, "CHAT_DEV_DELIVERY", True)
    session = build_chat_session()

    with caplog.at_level("WARNING", logger="app.services.chat_session"):
        assert await session.get_state() is SessionState.READY
        assert await session.get_state() is SessionState.READY
    await session.send_message("g1", "hi")

    assert sum("without being sent" in r.getMessage() for r in caplog.records) == 2
