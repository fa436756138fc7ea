"""Background cartoon-portrait generation for a room.

Generation is modelled as an ``asyncio.Task`` stored on the room's
:class:`AssetHandle`. The upload path starts it; the reveal does a bounded
wait on it and proceeds without the asset if it is late or failed.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..domain.errors import RoomNotFoundError, UpstreamFailure
from ..domain.models import AssetHandle, AssetState
from ..infrastructure.room_store import InMemoryRoomStore
from ..observability.metrics import ASSET_OUTCOMES

logger = logging.getLogger("tastematch.assets")

GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL_NATIVE", "https://generativelanguage.googleapis.com/v1beta")
DEFAULT_IMAGE_MODEL = os.getenv("TASTEMATCH_IMAGE_MODEL", "gemini-2.5-flash-image")
DEFAULT_WAIT_SECONDS = float(os.getenv("TASTEMATCH_ASSET_WAIT_SECONDS", "20"))


@dataclass(frozen=True)
class AssetInputs:
    photo_a: str
    mime_a: str
    name_a: str
    photo_b: str
    mime_b: str
    name_b: str
    compatibility: Optional[int] = None


class ImageGenerator(Protocol):
    async def generate(self, inputs: AssetInputs) -> str: ...


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def portrait_prompt(inputs: AssetInputs) -> str:
    score_line = (
        f"- Their compatibility score of {inputs.compatibility}% subtly incorporated\n"
        if inputs.compatibility is not None
        else ""
    )
    return (
        "Create an adorable animated cartoon-style couple portrait of these two people together.\n"
        "Make it a warm, romantic Valentine's Day themed illustration with:\n"
        "- Both people drawn in a cute animated/cartoon style\n"
        "- Hearts and romantic elements in the background\n"
        "- A warm, vibrant color palette\n"
        "- Both characters smiling and looking happy together\n"
        f"{score_line}"
        f'- Names "{inputs.name_a}" and "{inputs.name_b}" on a small banner or heart\n\n'
        "Keep the likeness of both people from the photos but in cartoon form."
    )


class GeminiImageClient:
    """Calls ``models/<model>:generateContent`` with both selfies as inline data."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 90.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else (os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or "")
        self.model = model or DEFAULT_IMAGE_MODEL
        self.base_url = (base_url or GEMINI_BASE_URL).rstrip("/")
        self._timeout = (5, timeout)
        self._session = session or _build_session()

    def _payload(self, inputs: AssetInputs) -> Dict[str, Any]:
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"inline_data": {"mime_type": inputs.mime_a, "data": inputs.photo_a}},
                        {"inline_data": {"mime_type": inputs.mime_b, "data": inputs.photo_b}},
                        {"text": portrait_prompt(inputs)},
                    ],
                }
            ],
            "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
        }

    def _post(self, inputs: AssetInputs) -> Dict[str, Any]:
        resp = self._session.post(
            f"{self.base_url}/models/{self.model}:generateContent",
            params={"key": self.api_key},
            json=self._payload(inputs),
            timeout=self._timeout,
        )
        resp.raise_for_status()
        return resp.json()

    @staticmethod
    def extract_image(data: Dict[str, Any]) -> str:
        candidates: List[Dict[str, Any]] = data.get("candidates") or []
        parts = ((candidates[0].get("content") or {}).get("parts") or []) if candidates else []
        if not parts:
            raise UpstreamFailure("No response parts from image model")
        for part in parts:
            inline = part.get("inline_data") or part.get("inlineData")
            if inline and inline.get("data"):
                return inline["data"]
        raise UpstreamFailure("No image generated in image model response")

    async def generate(self, inputs: AssetInputs) -> str:
        if not self.api_key:
            raise UpstreamFailure("Image generation not configured")
        try:
            data = await asyncio.to_thread(self._post, inputs)
        except requests.exceptions.RequestException as exc:
            raise UpstreamFailure(f"Image generation request failed: {exc}") from exc
        return self.extract_image(data)


class AssetGenerator:
    def __init__(self, store: InMemoryRoomStore, generator: ImageGenerator) -> None:
        self._store = store
        self._generator = generator

    def _handle(self, room_id: str) -> AssetHandle:
        room = self._store.get(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        return room.asset

    def request_generation(self, room_id: str, inputs: AssetInputs) -> bool:
        """Start generation unless one is already in progress or done.

        Must be called from the running event loop. Returns True when a new
        task was scheduled.
        """

        handle = self._handle(room_id)
        if handle.state in (AssetState.IN_PROGRESS, AssetState.READY):
            return False
        handle.state = AssetState.IN_PROGRESS
        handle.payload = None
        handle.error = None
        handle.task = asyncio.get_running_loop().create_task(self._run(room_id, handle, inputs))
        logger.info("asset_generation_started room=%s", room_id)
        return True

    async def _run(self, room_id: str, handle: AssetHandle, inputs: AssetInputs) -> Optional[str]:
        try:
            payload = await self._generator.generate(inputs)
        except asyncio.CancelledError:
            handle.state = AssetState.FAILED
            handle.error = "abandoned"
            raise
        except Exception as exc:
            handle.state = AssetState.FAILED
            handle.error = str(exc)
            ASSET_OUTCOMES.labels(state=AssetState.FAILED.value).inc()
            logger.warning("asset_generation_failed room=%s err=%s", room_id, exc)
            return None
        handle.state = AssetState.READY
        handle.payload = payload
        ASSET_OUTCOMES.labels(state=AssetState.READY.value).inc()
        logger.info("asset_generation_ready room=%s", room_id)
        return payload

    def current_state(self, room_id: str) -> AssetState:
        return self._handle(room_id).state

    async def wait(self, room_id: str, timeout: Optional[float] = None) -> Optional[str]:
        """Bounded wait for the asset; ``None`` on timeout, failure, or nothing requested."""

        handle = self._handle(room_id)
        if handle.state == AssetState.READY:
            return handle.payload
        task = handle.task
        if handle.state != AssetState.IN_PROGRESS or task is None:
            return None
        limit = DEFAULT_WAIT_SECONDS if timeout is None else timeout
        try:
            # Shielded so a timed-out reveal leaves generation running.
            return await asyncio.wait_for(asyncio.shield(task), timeout=limit)
        except asyncio.TimeoutError:
            logger.info("asset_wait_timeout room=%s timeout=%s", room_id, limit)
            return None
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    def abandon(self, room_id: str) -> bool:
        handle = self._handle(room_id)
        if handle.state != AssetState.IN_PROGRESS:
            return False
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
        handle.state = AssetState.FAILED
        handle.error = "abandoned"
        ASSET_OUTCOMES.labels(state="abandoned").inc()
        logger.info("asset_generation_abandoned room=%s", room_id)
        return True
