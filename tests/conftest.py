import pytest
from typing import List

import db
from app.errors import DispatchError
from app.services.chat_session import ChatSession, SessionState
from app.types.schedule_contract import ChatGroup


class FakeChatSession(ChatSession):
    """Records every call; chats listed in ``failing_chats`` raise DispatchError."""

    def __init__(self, state: SessionState = SessionState.READY):
        super().__init__()
        self.state = state
        self.calls: list = []
        self.failing_chats: set = set()
        self.failing_sends: set = set()
        self.groups: List[ChatGroup] = []
        self.closed = False

    async def get_state(self) -> SessionState:
        return self.state

    async def send_message(self, chat_id: str, text: str) -> None:
        self.calls.append(("send_message", chat_id, text))
        if chat_id in self.failing_chats or chat_id in self.failing_sends:
            raise DispatchError(f"unknown chat {chat_id}")

    async def set_admins_only(self, chat_id: str, admins_only: bool) -> None:
        self.calls.append(("set_admins_only", chat_id, admins_only))
        if chat_id in self.failing_chats:
            raise DispatchError(f"unknown chat {chat_id}")

    async def list_groups(self) -> List[ChatGroup]:
        return list(self.groups)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_session():
    return FakeChatSession()


@pytest.fixture
def sqlite_url(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'schedule.db'}"
    monkeypatch.delenv("DATABASE_PUBLIC_URL", raising=False)
    monkeypatch.setenv("DATABASE_URL", url)
    return url


@pytest.fixture
async def store(sqlite_url):
    await db.dispose_engine()
    await db.create_all()
    yield db
    await db.dispose_engine()
