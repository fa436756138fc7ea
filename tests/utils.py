from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from src.tastematch.domain.errors import UpstreamFailure
from src.tastematch.domain.questions import QUESTIONS
from src.tastematch.infrastructure.capability_registry import Capability
from src.tastematch.services.authorization import OAuthCredentials

# Answers in question order (ids 1..6)
ANSWERS_A = ["North Indian", "Medium", "Veg", "₹400-700", "Cozy & Romantic", "Biriyani/Rice"]
ANSWERS_B = ["North Indian", "Spicy", "Non-Veg", "₹1200+", "Fun & Casual", "Pizza/Pasta"]

PNG_B64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="


class FakeConnection:
    def __init__(self, open_: bool = True, fail: bool = False) -> None:
        self.open = open_
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_json(self, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(payload)

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m.get("type") == event_type]


class FakeProvider:
    def __init__(self) -> None:
        self.fail_url = False
        self.fail_exchange = False
        self.delay = 0.0
        self.url_calls: List[str] = []
        self.credentials: Dict[str, OAuthCredentials] = {}
        self.registered = False

    async def register_client(self) -> str:
        self.registered = True
        return "test-client"

    async def get_authorization_url(self, room_id: str) -> str:
        self.url_calls.append(room_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_url:
            raise UpstreamFailure("auth server down")
        return f"https://auth.example/authorize?state={room_id}"

    async def exchange_code(self, code: str, room_id: str) -> OAuthCredentials:
        if self.fail_exchange:
            raise UpstreamFailure("bad code")
        creds = OAuthCredentials(access_token=f"token-{code}")
        self.credentials[room_id] = creds
        return creds

    def has_credentials(self, room_id: str) -> bool:
        return room_id in self.credentials

    def get_credentials(self, room_id: str) -> Optional[OAuthCredentials]:
        return self.credentials.get(room_id)


class FakeBridge:
    def __init__(self, tool_names=("search_restaurants",)) -> None:
        self.tool_names = list(tool_names)
        self.fail = False
        self.connected: List[tuple] = []
        self.disconnected: List[str] = []
        self.calls: List[tuple] = []

    async def connect(self, room_id, action, credentials) -> List[Capability]:
        if self.fail:
            raise UpstreamFailure("mcp down")
        self.connected.append((room_id, action, credentials.access_token))

        def _make(name):
            async def invoke(ctx, args):
                self.calls.append((name, ctx.room_id, dict(args)))
                return {"ok": True, "room": ctx.room_id}

            return invoke

        return [
            Capability(name=n, description=f"remote {n}", invoke=_make(n), scope=room_id)
            for n in self.tool_names
        ]

    async def disconnect(self, room_id: str) -> None:
        self.disconnected.append(room_id)


class FakeImageClient:
    def __init__(self, payload: str = "IMAGEDATA", fail: bool = False) -> None:
        self.payload = payload
        self.fail = fail
        self.gate: Optional[asyncio.Event] = None
        self.calls = 0

    async def generate(self, inputs) -> str:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise UpstreamFailure("image model down")
        return self.payload


def answer_all(store, room_id: str, participant_id: str, answers: List[str]) -> None:
    for question, answer in zip(QUESTIONS, answers):
        store.record_answer(room_id, participant_id, question.id, answer)
