"""Remote operation discovery over MCP streamable HTTP.

Each room that authorised the provider gets one long-lived runner task that
owns the transport and :class:`mcp.ClientSession` context managers. The
runner publishes the discovered tool list, then parks until ``disconnect``
asks it to exit, so the contexts are always entered and left by the same
task.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client

from ..domain.errors import InvalidInputError, UpstreamFailure
from ..domain.models import Action, MessageContext
from ..infrastructure.capability_registry import Capability
from .authorization import OAuthCredentials

logger = logging.getLogger("tastematch.mcp")

SERVICE_URLS: Dict[Action, str] = {
    Action.DELIVERY: os.getenv("TASTEMATCH_SERVICE_URL_DELIVERY", "https://mcp.swiggy.com/food"),
    Action.DINEOUT: os.getenv("TASTEMATCH_SERVICE_URL_DINEOUT", "https://mcp.swiggy.com/dineout"),
    Action.COOK: os.getenv("TASTEMATCH_SERVICE_URL_COOK", "https://mcp.swiggy.com/im"),
}
CONNECT_TIMEOUT = float(os.getenv("TASTEMATCH_MCP_CONNECT_TIMEOUT", "20"))


@dataclass
class _RoomSession:
    url: str
    ready: "asyncio.Future[List[Any]]"
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    session: Optional[ClientSession] = None
    task: Optional["asyncio.Task[None]"] = None


def result_payload(result: Any) -> Dict[str, Any]:
    """Flatten a ``CallToolResult`` into plain JSON for the responder."""

    text = "".join(getattr(block, "text", "") for block in (getattr(result, "content", None) or []))
    try:
        parsed: Any = json.loads(text) if text else {}
    except (json.JSONDecodeError, TypeError):
        parsed = {"raw": text}
    if not isinstance(parsed, dict):
        parsed = {"result": parsed}
    if getattr(result, "isError", False):
        parsed.setdefault("error", text or "Remote tool reported an error")
    return parsed


class McpCapabilityBridge:
    def __init__(self, service_urls: Optional[Dict[Action, str]] = None, connect_timeout: Optional[float] = None) -> None:
        self._urls = dict(service_urls or SERVICE_URLS)
        self._timeout = CONNECT_TIMEOUT if connect_timeout is None else connect_timeout
        self._rooms: Dict[str, _RoomSession] = {}

    def is_connected(self, room_id: str) -> bool:
        entry = self._rooms.get(room_id)
        return entry is not None and entry.session is not None

    async def _run(self, room_id: str, entry: _RoomSession, headers: Dict[str, str]) -> None:
        try:
            async with streamablehttp_client(entry.url, headers=headers) as (read_stream, write_stream, _):
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    listed = await session.list_tools()
                    entry.session = session
                    if not entry.ready.done():
                        entry.ready.set_result(list(listed.tools))
                    await entry.stop.wait()
        except Exception as exc:
            if not entry.ready.done():
                entry.ready.set_exception(exc)
            else:
                logger.warning("mcp_session_dropped room=%s err=%s", room_id, exc)
        finally:
            entry.session = None
            if not entry.ready.done():
                entry.ready.cancel()

    def _invoker(self, tool_name: str):
        async def invoke(ctx: MessageContext, args: Dict[str, Any]) -> Dict[str, Any]:
            entry = self._rooms.get(ctx.room_id)
            if entry is None or entry.session is None:
                return {"error": "Remote tools are not connected for this room"}
            try:
                result = await entry.session.call_tool(tool_name, args or {})
            except Exception as exc:
                logger.warning("mcp_tool_failed room=%s tool=%s err=%s", ctx.room_id, tool_name, exc)
                return {"error": f"Tool call failed: {exc}"}
            return result_payload(result)

        return invoke

    async def connect(self, room_id: str, action: Action, credentials: OAuthCredentials) -> List[Capability]:
        """Open the room's session for ``action`` and describe its tools.

        Any previous session for the room is closed first.

        Raises:
            InvalidInputError: no service is configured for ``action``.
            UpstreamFailure: the remote session could not be established.
        """

        await self.disconnect(room_id)
        url = self._urls.get(action)
        if not url:
            raise InvalidInputError(f"Unknown service: {action}")
        loop = asyncio.get_running_loop()
        entry = _RoomSession(url=url, ready=loop.create_future())
        headers = {"Authorization": f"Bearer {credentials.access_token}"}
        entry.task = loop.create_task(self._run(room_id, entry, headers))
        self._rooms[room_id] = entry
        try:
            tools = await asyncio.wait_for(asyncio.shield(entry.ready), timeout=self._timeout)
        except asyncio.CancelledError:
            await self.disconnect(room_id)
            if not entry.ready.cancelled():
                raise
            raise UpstreamFailure(f"Could not connect to {url}: session closed during setup")
        except Exception as exc:
            await self.disconnect(room_id)
            raise UpstreamFailure(f"Could not connect to {url}: {exc}") from exc

        logger.info(
            "mcp_connected room=%s url=%s tools=%s",
            room_id,
            url,
            ",".join(t.name for t in tools),
        )
        return [
            Capability(
                name=tool.name,
                description=tool.description or f"Remote tool: {tool.name}",
                invoke=self._invoker(tool.name),
                input_schema=tool.inputSchema or {"type": "object", "properties": {}},
                scope=room_id,
            )
            for tool in tools
        ]

    async def disconnect(self, room_id: str) -> None:
        entry = self._rooms.pop(room_id, None)
        if entry is None:
            return
        entry.stop.set()
        task = entry.task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(task, timeout=5)
            except asyncio.TimeoutError:
                task.cancel()
            except Exception as exc:
                logger.debug("mcp_close_error room=%s err=%s", room_id, exc)
        logger.info("mcp_disconnected room=%s", room_id)
