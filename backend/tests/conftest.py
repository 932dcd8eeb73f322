# backend/tests/conftest.py

import os
import copy
import random
import pytest
from fastapi.testclient import TestClient
from dotenv import load_dotenv
from unittest.mock import AsyncMock

# Load the test environment FIRST, before any app imports, so the settings
# singleton is built from it.
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env.test"))

from app.main import app  # noqa: E402
from app.workflows.effects import EffectRunner  # noqa: E402
from app.workflows.engine import FlowInterpreter  # noqa: E402
from app.workflows.errors import ChannelSendError  # noqa: E402
from app.workflows.registry import build_default_registry  # noqa: E402


# --- In-memory collaborators ---

class InMemoryFlowStore:
    def __init__(self, flows=None):
        self.flows = dict(flows or {})

    async def get_flow(self, bot_id):
        return copy.deepcopy(self.flows.get(bot_id))


class InMemorySessionStore:
    def __init__(self):
        self.sessions = {}
        self.saved = []
        self.fail_saves = False

    async def load_session(self, session_id):
        session = self.sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def save_session(self, session_id, state):
        if self.fail_saves:
            raise ConnectionError("database unavailable")
        self.sessions[session_id] = state.model_copy(deep=True)
        self.saved.append(session_id)


class RecordingMessageSink:
    def __init__(self):
        self.records = []

    async def record(self, conversation_id, content, direction, metadata):
        self.records.append({
            "conversation_id": conversation_id,
            "content": content,
            "direction": direction,
            "metadata": metadata,
        })
        return f"msg-{len(self.records)}"


class FakeChannelSender:
    def __init__(self):
        self.sent = []
        self.failing_recipients = set()

    async def send(self, platform, recipient, message, buttons=None):
        if recipient in self.failing_recipients:
            raise ChannelSendError(platform, recipient, "HTTP 400: recipient blocked")
        self.sent.append({"platform": platform, "recipient": recipient, "message": message, "buttons": buttons})
        return f"wamid.{len(self.sent)}"


# --- Fixtures ---

@pytest.fixture
def flow_store():
    return InMemoryFlowStore()


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def message_sink():
    return RecordingMessageSink()


@pytest.fixture
def channel_sender():
    return FakeChannelSender()


@pytest.fixture
def interpreter(flow_store, session_store, message_sink, channel_sender):
    """Interpreter wired to the in-memory collaborators and the built-in handlers."""
    return FlowInterpreter(
        flow_store=flow_store,
        session_store=session_store,
        message_sink=message_sink,
        registry=build_default_registry(),
        effect_runner=EffectRunner(channel_sender),
        max_steps=20,
        rng=random.Random(7),
    )


@pytest.fixture(scope="function")
def test_client(mocker):
    """
    Provides a TestClient for API integration tests.
    Startup and shutdown run without touching MongoDB, Redis or the WhatsApp API.
    """
    mocker.patch("app.utils.lifecycle.db_service.create_indexes", new_callable=AsyncMock)
    mocker.patch("app.utils.lifecycle.channel_service.close", new_callable=AsyncMock)
    mocker.patch("app.utils.lifecycle.session_locks.close", new_callable=AsyncMock)

    # The app's lifespan (startup/shutdown events) is managed by the TestClient
    with TestClient(app) as client:
        yield client
