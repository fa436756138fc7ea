import json
import types
from contextlib import asynccontextmanager

import pytest

from src.tastematch.domain.errors import InvalidInputError, UpstreamFailure
from src.tastematch.domain.models import Action, MessageContext
from src.tastematch.services import capability_bridge
from src.tastematch.services.authorization import OAuthCredentials
from src.tastematch.services.capability_bridge import McpCapabilityBridge, result_payload

URLS = {Action.DELIVERY: "https://mcp.example/food"}
CREDS = OAuthCredentials(access_token="tok")


def _text_result(payload, is_error=False):
    return types.SimpleNamespace(content=[types.SimpleNamespace(type="text", text=payload)], isError=is_error)


class FakeClientSession:
    instances = []

    def __init__(self, read_stream, write_stream):
        self.calls = []
        self.closed = False
        FakeClientSession.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True

    async def initialize(self):
        return None

    async def list_tools(self):
        tool = types.SimpleNamespace(
            name="search_restaurants",
            description="Find places",
            inputSchema={"type": "object", "properties": {"query": {"type": "string"}}},
        )
        return types.SimpleNamespace(tools=[tool])

    async def call_tool(self, name, args):
        self.calls.append((name, args))
        return _text_result(json.dumps({"restaurants": ["Bombay Canteen"]}))


@pytest.fixture
def transport(monkeypatch):
    seen = []
    FakeClientSession.instances = []

    @asynccontextmanager
    async def fake_client(url, headers=None):
        seen.append((url, headers))
        yield (object(), object(), lambda: None)

    monkeypatch.setattr(capability_bridge, "streamablehttp_client", fake_client)
    monkeypatch.setattr(capability_bridge, "ClientSession", FakeClientSession)
    return seen


def test_result_payload_variants():
    assert result_payload(_text_result('{"a": 1}')) == {"a": 1}
    assert result_payload(_text_result("[1, 2]")) == {"result": [1, 2]}
    assert result_payload(_text_result("plain words")) == {"raw": "plain words"}
    assert result_payload(_text_result("boom", is_error=True)) == {"raw": "boom", "error": "boom"}
    assert result_payload(types.SimpleNamespace(content=[], isError=False)) == {}


@pytest.mark.asyncio
async def test_connect_describes_room_scoped_tools(transport):
    bridge = McpCapabilityBridge(service_urls=URLS, connect_timeout=1)
    caps = await bridge.connect("room1", Action.DELIVERY, CREDS)
    assert transport == [("https://mcp.example/food", {"Authorization": "Bearer tok"})]
    assert [c.name for c in caps] == ["search_restaurants"]
    assert caps[0].scope == "room1"
    assert caps[0].input_schema["properties"]["query"]["type"] == "string"
    assert bridge.is_connected("room1")

    ctx = MessageContext(room_id="room1", participant_id="p1", display_name="Priya")
    assert await caps[0].invoke(ctx, {"query": "biryani"}) == {"restaurants": ["Bombay Canteen"]}
    assert FakeClientSession.instances[0].calls == [("search_restaurants", {"query": "biryani"})]

    await bridge.disconnect("room1")
    assert FakeClientSession.instances[0].closed
    assert not bridge.is_connected("room1")
    assert "not connected" in (await caps[0].invoke(ctx, {}))["error"]
    await bridge.disconnect("room1")


@pytest.mark.asyncio
async def test_reconnect_replaces_previous_session(transport):
    bridge = McpCapabilityBridge(service_urls=URLS, connect_timeout=1)
    await bridge.connect("room1", Action.DELIVERY, CREDS)
    await bridge.connect("room1", Action.DELIVERY, CREDS)
    assert FakeClientSession.instances[0].closed
    assert not FakeClientSession.instances[1].closed
    await bridge.disconnect("room1")


@pytest.mark.asyncio
async def test_unconfigured_action_rejected(transport):
    bridge = McpCapabilityBridge(service_urls=URLS)
    with pytest.raises(InvalidInputError):
        await bridge.connect("room1", Action.COOK, CREDS)


@pytest.mark.asyncio
async def test_transport_failure_is_upstream(monkeypatch):
    @asynccontextmanager
    async def refusing(url, headers=None):
        raise ConnectionError("refused")
        yield  # pragma: no cover

    monkeypatch.setattr(capability_bridge, "streamablehttp_client", refusing)
    bridge = McpCapabilityBridge(service_urls=URLS, connect_timeout=1)
    with pytest.raises(UpstreamFailure, match="refused"):
        await bridge.connect("room1", Action.DELIVERY, CREDS)
    assert not bridge.is_connected("room1")
