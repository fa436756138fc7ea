import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from src.tastematch.infrastructure import events  # noqa: E402
from src.tastematch.infrastructure.conversation_store import InMemoryConversationStore  # noqa: E402
from src.tastematch.infrastructure.room_store import InMemoryRoomStore  # noqa: E402
from src.tastematch.services.orchestrator import build_orchestrator, set_orchestrator  # noqa: E402
from src.tastematch.services.responder import ScriptedResponder  # noqa: E402

from .utils import FakeBridge, FakeImageClient, FakeProvider  # noqa: E402


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Every test starts without credentials, event bus, or startup registration."""

    monkeypatch.setenv("TASTEMATCH_REGISTER_OAUTH_CLIENT", "0")
    for key in (
        "REDIS_URL",
        "OPENAI_API_KEY",
        "GEMINI_API_KEY",
        "XAI_API_KEY",
        "TASTEMATCH_MODEL_PROVIDER",
        "TASTEMATCH_FORCE_MODEL_PROVIDER",
        "TASTEMATCH_ENABLE_LOCAL_PROVIDER",
    ):
        monkeypatch.delenv(key, raising=False)
    events.reset_publisher()
    yield
    events.reset_publisher()


@pytest.fixture
def store():
    return InMemoryRoomStore()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def bridge():
    return FakeBridge()


@pytest.fixture
def image_client():
    return FakeImageClient()


@pytest.fixture
def orchestrator(store, provider, bridge, image_client):
    orch = build_orchestrator(
        store=store,
        responder=ScriptedResponder(),
        provider=provider,
        bridge=bridge,
        image_client=image_client,
        conversations=InMemoryConversationStore(),
        asset_wait=0.5,
    )
    set_orchestrator(orch)
    yield orch
    set_orchestrator(None)


@pytest.fixture
def full_room(store):
    room = store.create("p1", "Priya", "+911111111111")
    store.join(room.room_id, "p2", "Arjun", "+912222222222")
    return room
