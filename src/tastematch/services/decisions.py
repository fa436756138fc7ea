"""Joint next-step locking and the deferred authorization handshake.

Per room: ``unchosen -> locked(action, chooser)``, terminal. When the locked
action needs provider credentials the room does not hold yet, the message
that chose it is parked in a single pending slot until the authorization
callback arrives, then handed back for replay exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Dict, List, Optional, Protocol, Set

from ..domain.errors import UpstreamFailure
from ..domain.models import Action, MessageContext
from ..domain.room_models import PushEvent
from ..infrastructure.capability_registry import Capability, CapabilityRegistry
from ..infrastructure.connections import ConnectionHub
from ..infrastructure.events import publish_room_event
from ..infrastructure.room_store import InMemoryRoomStore
from ..observability.metrics import ACTION_PROPOSALS, AUTH_HANDSHAKES
from .authorization import OAuthCredentials

logger = logging.getLogger("tastematch.decisions")


class AuthorizationProvider(Protocol):
    async def get_authorization_url(self, room_id: str) -> str: ...

    async def exchange_code(self, code: str, room_id: str) -> OAuthCredentials: ...

    def has_credentials(self, room_id: str) -> bool: ...

    def get_credentials(self, room_id: str) -> Optional[OAuthCredentials]: ...


class CapabilitySource(Protocol):
    async def connect(self, room_id: str, action: Action, credentials: OAuthCredentials) -> List[Capability]: ...

    async def disconnect(self, room_id: str) -> None: ...


@dataclass(frozen=True)
class Proposal:
    accepted: bool
    action: Action
    chosen_by: str


@dataclass(frozen=True)
class PendingRequest:
    ctx: MessageContext
    text: str


class DecisionCoordinator:
    def __init__(
        self,
        store: InMemoryRoomStore,
        hub: ConnectionHub,
        provider: AuthorizationProvider,
        registry: CapabilityRegistry,
        source: CapabilitySource,
    ) -> None:
        self._store = store
        self._hub = hub
        self._provider = provider
        self._registry = registry
        self._source = source
        self._pending: Dict[str, PendingRequest] = {}
        self._reserved: Set[str] = set()
        self._lock = RLock()

    def propose(self, room_id: str, participant_id: str, action: Action) -> Proposal:
        """First proposal for a room wins; every later one reports the locked value."""

        won, locked, chosen_by = self._store.lock_action(room_id, participant_id, action)
        ACTION_PROPOSALS.labels(outcome="accepted" if won else "rejected").inc()
        if won:
            logger.info("action_locked room=%s action=%s by=%s", room_id, locked.value, chosen_by)
            publish_room_event("action_chosen", room_id, action=locked.value, chosen_by=chosen_by)
        else:
            logger.info(
                "action_rejected room=%s proposed=%s locked=%s by=%s",
                room_id,
                action.value,
                locked.value,
                chosen_by,
            )
        return Proposal(accepted=won, action=locked, chosen_by=chosen_by)

    def needs_authorization(self, room_id: str) -> bool:
        return not self._provider.has_credentials(room_id)

    def handshake_open(self, room_id: str) -> bool:
        """True while a handshake is being started or waits for its callback."""

        with self._lock:
            return room_id in self._reserved or room_id in self._pending

    async def begin_authorization(self, ctx: MessageContext, text: str) -> Optional[str]:
        """Park ``text`` for replay and ask everyone in the room to authorise.

        The room's slot is reserved before the provider is awaited, so a second
        caller arriving meanwhile gets ``None`` and nothing is parked for it.

        Raises:
            UpstreamFailure: the provider could not produce an authorization URL;
                nothing is parked in that case and the reservation is released.
        """

        with self._lock:
            if ctx.room_id in self._reserved or ctx.room_id in self._pending:
                logger.info("authorization_already_open room=%s participant=%s", ctx.room_id, ctx.participant_id)
                return None
            self._reserved.add(ctx.room_id)
        try:
            url = await self._provider.get_authorization_url(ctx.room_id)
        except UpstreamFailure:
            AUTH_HANDSHAKES.labels(stage="url_failed").inc()
            with self._lock:
                self._reserved.discard(ctx.room_id)
            raise
        except Exception as exc:
            AUTH_HANDSHAKES.labels(stage="url_failed").inc()
            with self._lock:
                self._reserved.discard(ctx.room_id)
            raise UpstreamFailure(f"Failed to start authorization: {exc}") from exc
        with self._lock:
            if ctx.room_id not in self._reserved:
                # Room was reset while the provider was awaited.
                return None
            self._reserved.discard(ctx.room_id)
            self._pending[ctx.room_id] = PendingRequest(ctx=ctx, text=text)
        AUTH_HANDSHAKES.labels(stage="started").inc()
        await self._hub.broadcast_to_room(ctx.room_id, PushEvent(type="authorization_required", auth_url=url))
        logger.info("authorization_required room=%s participant=%s", ctx.room_id, ctx.participant_id)
        return url

    async def inject_capabilities(self, room_id: str, action: Action) -> int:
        """Connect the remote source for ``action`` and merge its operations.

        Returns the number merged; 0 when credentials are missing or the
        connection failed (the room keeps only the built-in operations).
        """

        credentials = self._provider.get_credentials(room_id)
        if credentials is None:
            return 0
        try:
            entries = await self._source.connect(room_id, action, credentials)
        except Exception as exc:
            logger.warning("capability_connect_failed room=%s action=%s err=%s", room_id, action.value, exc)
            await self._hub.broadcast_to_room(
                room_id,
                PushEvent(
                    type="error",
                    error="Failed to connect to the food provider. The assistant will use built-in suggestions instead.",
                ),
            )
            return 0
        self._registry.merge(entries)
        logger.info("capabilities_injected room=%s count=%s", room_id, len(entries))
        return len(entries)

    async def complete_authorization(self, room_id: str) -> Optional[PendingRequest]:
        """Signal completion and hand back the parked request, if any, exactly once."""

        await self._hub.broadcast_to_room(room_id, PushEvent(type="authorization_complete"))
        with self._lock:
            pending = self._pending.pop(room_id, None)
        if pending is None:
            logger.info("authorization_complete_noop room=%s", room_id)
            return None
        room = self._store.get(room_id)
        if room is None or room.chosen_action is None:
            return None
        AUTH_HANDSHAKES.labels(stage="completed").inc()
        publish_room_event("authorization_complete", room_id, action=room.chosen_action.value)
        await self.inject_capabilities(room_id, room.chosen_action)
        return pending

    def pending(self, room_id: str) -> Optional[PendingRequest]:
        with self._lock:
            return self._pending.get(room_id)

    def clear(self, room_id: str) -> None:
        with self._lock:
            self._pending.pop(room_id, None)
            self._reserved.discard(room_id)
