"""Chat session collaborator.

The real WhatsApp Web session lives in a separate gateway process (a headless
browser bridge). This module only talks to it:

* ``GatewayChatSession`` – REST client over ``httpx``; gateway lifecycle events
  (QR issued, pairing code issued, ready, disconnected) are pushed to our
  webhook and fanned out to subscribers through ``handle_event``.
* ``DevChatSession`` – used when no gateway is configured; only logs what it
  would send and stays not-ready unless ``CHAT_DEV_DELIVERY`` is set.

Every transport or gateway failure is surfaced as ``DispatchError``.
"""

from __future__ import annotations

import abc
import logging
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import quote

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_random_exponential,
    retry_if_exception_type,
)

from app.errors import DispatchError
from app.types.schedule_contract import ChatGroup, CredentialArtifact, GatewayEvent
from config import settings

_LOGGER = logging.getLogger(__name__)

CredentialHandler = Callable[[CredentialArtifact], None]
LifecycleHandler = Callable[[], None]


class SessionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"


class ChatSession(abc.ABC):
    """Send/toggle operations plus an observer contract for auth events."""

    def __init__(self) -> None:
        self._credential_handlers: List[CredentialHandler] = []
        self._ready_handlers: List[LifecycleHandler] = []
        self._disconnected_handlers: List[LifecycleHandler] = []

    # -- subscriptions -------------------------------------------------
    def on_credential(self, handler: CredentialHandler) -> CredentialHandler:
        self._credential_handlers.append(handler)
        return handler

    def on_ready(self, handler: LifecycleHandler) -> LifecycleHandler:
        self._ready_handlers.append(handler)
        return handler

    def on_disconnected(self, handler: LifecycleHandler) -> LifecycleHandler:
        self._disconnected_handlers.append(handler)
        return handler

    def emit_credential(self, artifact: CredentialArtifact) -> None:
        for handler in self._credential_handlers:
            handler(artifact)

    def emit_ready(self) -> None:
        for handler in self._ready_handlers:
            handler()

    def emit_disconnected(self) -> None:
        for handler in self._disconnected_handlers:
            handler()

    def handle_event(self, event: GatewayEvent) -> None:
        """Translate a gateway webhook event into subscriber callbacks."""
        if event.event == "ready":
            self.emit_ready()
        elif event.event == "disconnected":
            self.emit_disconnected()
        else:
            self.emit_credential(event.artifact())

    # -- operations ----------------------------------------------------
    @abc.abstractmethod
    async def get_state(self) -> SessionState: ...

    @abc.abstractmethod
    async def send_message(self, chat_id: str, text: str) -> None: ...

    @abc.abstractmethod
    async def set_admins_only(self, chat_id: str, admins_only: bool) -> None: ...

    @abc.abstractmethod
    async def list_groups(self) -> List[ChatGroup]: ...

    async def start(self) -> None:
        """Push the current session state to subscribers."""

    async def aclose(self) -> None:
        pass


# ──────────────────────────────────────────────────────────────────────────
# Gateway client
# ──────────────────────────────────────────────────────────────────────────

# Status polling is idempotent, so transport hiccups are retried.
# Sends and toggles are not: a failed tick item is simply retried next tick.
RETRY_ERRORS = (httpx.TransportError,)


def _chat_path(chat_id: str) -> str:
    # ids like "123@g.us" keep their "@"; "/", "?" and "#" must not leak into the route
    return quote(chat_id, safe="@")


class GatewayChatSession(ChatSession):
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise DispatchError(f"gateway unreachable ({method} {path}): {exc}") from exc
        if resp.status_code == 404:
            raise DispatchError(f"unknown chat ({method} {path})")
        if resp.status_code in (409, 503):
            raise DispatchError(f"session not ready ({method} {path})")
        if resp.is_error:
            raise DispatchError(f"gateway error {resp.status_code} ({method} {path}): {resp.text[:200]}")
        return resp

    @retry(
        wait=wait_random_exponential(multiplier=0.5, max=5),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(RETRY_ERRORS),
        reraise=True,
    )
    async def _fetch_status(self) -> dict:
        resp = await self._client.get("/session/status")
        resp.raise_for_status()
        return resp.json()

    async def _status(self) -> dict:
        try:
            return await self._fetch_status()
        except (httpx.HTTPError, ValueError) as exc:
            raise DispatchError(f"cannot read session status: {exc}") from exc

    async def get_state(self) -> SessionState:
        payload = await self._status()
        try:
            return SessionState(str(payload.get("state", "")).lower())
        except ValueError:
            _LOGGER.warning("Unknown gateway state %r, treating as connecting", payload.get("state"))
            return SessionState.CONNECTING

    async def send_message(self, chat_id: str, text: str) -> None:
        await self._request("POST", f"/chats/{_chat_path(chat_id)}/messages", json={"text": text})

    async def set_admins_only(self, chat_id: str, admins_only: bool) -> None:
        await self._request("POST", f"/chats/{_chat_path(chat_id)}/admins-only", json={"admins_only": admins_only})

    async def list_groups(self) -> List[ChatGroup]:
        resp = await self._request("GET", "/groups")
        return [ChatGroup.model_validate(g) for g in resp.json()]

    async def start(self) -> None:
        try:
            payload = await self._status()
        except DispatchError as exc:
            _LOGGER.warning("Gateway not reachable at startup: %s", exc)
            return
        state = str(payload.get("state", "")).lower()
        if state == SessionState.READY.value:
            self.emit_ready()
        elif payload.get("qr"):
            self.emit_credential(CredentialArtifact(type="qr", value=payload["qr"]))
        elif payload.get("pairing_code"):
            self.emit_credential(CredentialArtifact(type="pairing_code", value=payload["pairing_code"]))

    async def aclose(self) -> None:
        await self._client.aclose()


# ──────────────────────────────────────────────────────────────────────────
# DEV mode
# ──────────────────────────────────────────────────────────────────────────

class DevChatSession(ChatSession):
    """Logs instead of sending.

    With ``deliver=False`` the session never becomes ready, so ticks are
    skipped and schedules stay pending until a gateway is configured.
    """

    def __init__(self, deliver: bool = False) -> None:
        super().__init__()
        self.deliver = deliver

    async def get_state(self) -> SessionState:
        if not self.deliver:
            return SessionState.CONNECTING
        _LOGGER.warning("[DEV] no chat gateway: due items are marked executed without being sent")
        return SessionState.READY

    async def send_message(self, chat_id: str, text: str) -> None:
        _LOGGER.info("[DEV] would send to %s: %r", chat_id, text)

    async def set_admins_only(self, chat_id: str, admins_only: bool) -> None:
        _LOGGER.info("[DEV] would set admins_only=%s on %s", admins_only, chat_id)

    async def list_groups(self) -> List[ChatGroup]:
        return []

    async def start(self) -> None:
        if self.deliver:
            self.emit_ready()


def build_chat_session() -> ChatSession:
    if not settings.CHAT_GATEWAY_URL:
        if settings.CHAT_DEV_DELIVERY:
            _LOGGER.warning("CHAT_GATEWAY_URL not set; DEV chat session consumes schedules without sending")
        else:
            _LOGGER.warning("CHAT_GATEWAY_URL not set; ticks are skipped until a gateway is configured")
        return DevChatSession(deliver=settings.CHAT_DEV_DELIVERY)
    return GatewayChatSession(
        settings.CHAT_GATEWAY_URL,
        token=settings.CHAT_GATEWAY_TOKEN,
        timeout=settings.CHAT_GATEWAY_TIMEOUT,
    )
