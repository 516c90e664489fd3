"""Pydantic models that define the contract between the submission API, the
schedule store and the dispatcher.

Like the rest of ``app.types`` these classes stay free of FastAPI and database
imports so workers, API responses and tests can share them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union
from typing_extensions import Annotated
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import settings


class ItemKind(str, Enum):
    """Tag for the two scheduled-item tables."""

    LINK = "link"
    STATUS = "status"


StatusAction = Literal["open", "close"]


def _to_utc(v: datetime) -> datetime:
    """Naive timestamps come from the panel's ``datetime-local`` input and are
    read in DEFAULT_TIMEZONE; everything is normalised to UTC."""
    if v.tzinfo is None:
        v = v.replace(tzinfo=ZoneInfo(settings.DEFAULT_TIMEZONE))
    return v.astimezone(timezone.utc)


def _required_text(v: str, field: str) -> str:
    if not isinstance(v, str) or not v.strip():
        raise ValueError(f"{field} must be a non-empty string")
    return v.strip()


def _optional_text(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


# ──────────────────────────────
# Submissions
# ──────────────────────────────


class LinkPostIn(BaseModel):
    """A link to post to ``chat_id`` once ``scheduled_at`` has passed."""

    chat_id: str
    link: str
    description: Optional[str] = None
    scheduled_at: datetime

    @field_validator("chat_id")
    def _chat_id(cls, v):  # noqa: N805
        return _required_text(v, "chat_id")

    @field_validator("link")
    def _link(cls, v):  # noqa: N805
        return _required_text(v, "link")

    @field_validator("description")
    def _description(cls, v):  # noqa: N805
        return _optional_text(v)

    @field_validator("scheduled_at")
    def _scheduled_at(cls, v):  # noqa: N805
        return _to_utc(v)


class StatusChangeIn(BaseModel):
    """Open (everyone posts) or close (admins only) a group at ``scheduled_at``,
    optionally announcing it with ``message``."""

    chat_id: str
    action: StatusAction
    message: Optional[str] = None
    scheduled_at: datetime

    @field_validator("chat_id")
    def _chat_id(cls, v):  # noqa: N805
        return _required_text(v, "chat_id")

    @field_validator("message")
    def _message(cls, v):  # noqa: N805
        return _optional_text(v)

    @field_validator("scheduled_at")
    def _scheduled_at(cls, v):  # noqa: N805
        return _to_utc(v)


class ScheduledResponse(BaseModel):
    id: int
    kind: ItemKind
    status: str = "scheduled"


# ──────────────────────────────
# Views (listing)
# ──────────────────────────────


class _ItemView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    chat_id: str
    scheduled_at: datetime
    executed: bool
    executed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class LinkPostView(_ItemView):
    kind: Literal["link"] = "link"
    link: str
    description: Optional[str] = None


class StatusChangeView(_ItemView):
    kind: Literal["status"] = "status"
    action: StatusAction
    message: Optional[str] = None


ScheduledItemView = Annotated[Union[LinkPostView, StatusChangeView], Field(discriminator="kind")]


# ──────────────────────────────
# Chat session / auth
# ──────────────────────────────


class CredentialArtifact(BaseModel):
    """QR payload or pairing code issued while the chat session authenticates."""

    type: Literal["qr", "pairing_code"]
    value: str
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChatGroup(BaseModel):
    id: str
    name: str


class GatewayEvent(BaseModel):
    """Webhook body pushed by the chat gateway.

    ``qr`` and ``pairing_code`` carry ``data["value"]``; ``ready`` and
    ``disconnected`` carry nothing we rely on.
    """

    event: Literal["qr", "pairing_code", "ready", "disconnected"]
    data: dict = Field(default_factory=dict)

    def artifact(self) -> Optional[CredentialArtifact]:
        if self.event not in ("qr", "pairing_code"):
            return None
        value = self.data.get("value") or self.data.get(self.event)
        if not value:
            raise ValueError(f"{self.event} event without a value")
        return CredentialArtifact(type=self.event, value=str(value))


class TickSummary(BaseModel):
    started_at: datetime
    skipped: Optional[str] = None
    executed: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    aborted_kinds: List[ItemKind] = Field(default_factory=list)
