import asyncio
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from mental_buddy.core.deps import get_current_user, get_relay, get_store
from mental_buddy.database import init_db, make_engine
from mental_buddy.main import app
from mental_buddy.services.session_store import SessionStore

USER_ID = "user-1"


class FakeRelay:
    """Relay stand-in returning canned replies or raising a fixed error."""

    def __init__(self, replies: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.replies = list(replies or ["I'm here for you."])
        self.error = error
        self.prompts: List[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def reply(self, message):
        self.prompts.append(message)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


async def settle(rounds: int = 20) -> None:
    """Let live-query consumer tasks process pending changes."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def store():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield SessionStore(engine)
    engine.dispose()


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def client(store, relay):
    app.dependency_overrides[get_current_user] = lambda: USER_ID
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_relay] = lambda: relay
    yield TestClient(app)
    app.dependency_overrides.clear()
