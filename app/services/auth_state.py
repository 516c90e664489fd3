"""Login status of the chat session, as seen by the API layer."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from app.services.chat_session import ChatSession
from app.types.schedule_contract import CredentialArtifact

_LOGGER = logging.getLogger(__name__)


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_SCAN = "awaiting_scan"
    READY = "ready"


class AuthSnapshot(BaseModel):
    state: AuthState
    artifact: Optional[CredentialArtifact] = None
    updated_at: datetime


class AuthStateTracker:
    """Holds the latest credential artifact and whether the session is ready.

    Transitions are driven only by chat-session events:

        credential issued  : * → AWAITING_SCAN (newest artifact replaces the old one)
        session ready      : * → READY (artifact cleared)
        session lost       : * → UNAUTHENTICATED (artifact cleared)
    """

    def __init__(self) -> None:
        self._state = AuthState.UNAUTHENTICATED
        self._artifact: Optional[CredentialArtifact] = None
        self._updated_at = datetime.now(timezone.utc)

    def attach(self, session: ChatSession) -> "AuthStateTracker":
        session.on_credential(self.credential_issued)
        session.on_ready(self.session_ready)
        session.on_disconnected(self.session_lost)
        return self

    def credential_issued(self, artifact: CredentialArtifact) -> None:
        self._set(AuthState.AWAITING_SCAN, artifact)
        _LOGGER.info("Chat session awaiting %s", artifact.type)

    def session_ready(self) -> None:
        self._set(AuthState.READY, None)
        _LOGGER.info("Chat session ready")

    def session_lost(self) -> None:
        self._set(AuthState.UNAUTHENTICATED, None)
        _LOGGER.warning("Chat session disconnected")

    def _set(self, state: AuthState, artifact: Optional[CredentialArtifact]) -> None:
        self._state = state
        self._artifact = artifact
        self._updated_at = datetime.now(timezone.utc)

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def artifact(self) -> Optional[CredentialArtifact]:
        return self._artifact

    @property
    def is_ready(self) -> bool:
        return self._state is AuthState.READY

    def snapshot(self) -> AuthSnapshot:
        return AuthSnapshot(state=self._state, artifact=self._artifact, updated_at=self._updated_at)
