"""Room workflow coordinator.

Routes every inbound event (HTTP call, socket message, socket open/close,
authorization callback) through the session store, the decision coordinator,
the responder and the connection hub. Identity travels as an explicit
:class:`MessageContext`; nothing is looked up from ambient state.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
from threading import RLock
from typing import Any, Coroutine, Dict, List, Optional, Set, Tuple

from ..core.state_machine import derive_phase, is_private
from ..domain.errors import (
    IncompleteAnswersError,
    InvalidInputError,
    ParticipantNotFoundError,
    RoomNotFoundError,
    UpstreamFailure,
)
from ..domain.models import Action, MessageContext, Participant, Room, parse_action
from ..domain.questions import QUESTION_COUNT
from ..domain.room_models import PushEvent
from ..infrastructure.capability_registry import CapabilityRegistry
from ..infrastructure.connections import Connection, ConnectionHub
from ..infrastructure.conversation_store import ConversationStore, get_conversation_store
from ..infrastructure.events import publish_room_event
from ..infrastructure.room_store import InMemoryRoomStore, get_room_store
from ..observability.metrics import MESSAGES_PROCESSED, REVEALS, ROOMS_CREATED
from . import progression, scoring
from .asset_generator import AssetGenerator, AssetInputs, GeminiImageClient
from .authorization import OAuthProvider
from .builtin_tools import build_builtin_capabilities
from .capability_bridge import McpCapabilityBridge
from .decisions import AuthorizationProvider, DecisionCoordinator
from .recommendations import personal_reveal
from .responder import LLMResponder, Responder

logger = logging.getLogger("tastematch.orchestrator")

MAX_PHOTO_BYTES = int(os.getenv("TASTEMATCH_MAX_PHOTO_BYTES", str(5 * 1024 * 1024)))
ASSET_WAIT_SECONDS = float(os.getenv("TASTEMATCH_ASSET_WAIT_SECONDS", "20"))

GENERIC_ERROR = "Something went wrong. Please try again."
AUTH_START_ERROR = "Failed to start food provider authentication. Please try again."


def decode_photo(data: str, mime_type: str, max_bytes: int = MAX_PHOTO_BYTES) -> str:
    """Validate an uploaded photo and return its bare base64 payload.

    Accepts either raw base64 or a ``data:<mime>;base64,`` URL.

    Raises:
        InvalidInputError: non-image mime type, malformed base64, empty or oversize payload.
    """

    if not (mime_type or "").lower().startswith("image/"):
        raise InvalidInputError(f"Unsupported photo type: {mime_type}")
    payload = (data or "").strip()
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError("Photo data is not valid base64") from exc
    if not raw:
        raise InvalidInputError("Photo data is empty")
    if len(raw) > max_bytes:
        raise InvalidInputError(f"Photo exceeds {max_bytes} bytes")
    return payload


class Orchestrator:
    def __init__(
        self,
        store: InMemoryRoomStore,
        hub: ConnectionHub,
        registry: CapabilityRegistry,
        decisions: DecisionCoordinator,
        assets: AssetGenerator,
        responder: Responder,
        conversations: ConversationStore,
        provider: AuthorizationProvider,
        asset_wait: Optional[float] = None,
    ) -> None:
        self.store = store
        self.hub = hub
        self.registry = registry
        self.decisions = decisions
        self.assets = assets
        self.responder = responder
        self.conversations = conversations
        self.provider = provider
        self._asset_wait = ASSET_WAIT_SECONDS if asset_wait is None else asset_wait
        self._revealed: Set[str] = set()
        self._claims = RLock()
        self._participant_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._tasks: Set["asyncio.Task[Any]"] = set()

    # ------------------------------------------------------------------
    # Background task tracking
    # ------------------------------------------------------------------
    def spawn(self, coro: Coroutine[Any, Any, Any]) -> "asyncio.Task[Any]":
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every spawned task, including ones spawned while waiting."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _lock_for(self, room_id: str, participant_id: str) -> asyncio.Lock:
        key = (room_id, participant_id)
        lock = self._participant_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._participant_locks[key] = lock
        return lock

    def _require(self, room_id: str, participant_id: str) -> Tuple[Room, Participant]:
        room = self.store.get(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        participant = self.store.find_participant(room, participant_id)
        if participant is None:
            raise ParticipantNotFoundError(room_id, participant_id)
        return room, participant

    # ------------------------------------------------------------------
    # HTTP-driven operations
    # ------------------------------------------------------------------
    def create_room(self, participant_id: str, name: str, contact: str) -> Room:
        room = self.store.create(participant_id, name, contact)
        ROOMS_CREATED.inc()
        logger.info("room_created room=%s participant=%s", room.room_id, participant_id)
        publish_room_event("room_created", room.room_id, participant=participant_id)
        return room

    def join_room(self, room_id: str, participant_id: str, name: str, contact: str) -> Room:
        room = self.store.join(room_id, participant_id, name, contact)
        logger.info("room_joined room=%s participant=%s", room_id, participant_id)
        publish_room_event("room_joined", room_id, participant=participant_id)
        return room

    async def submit_preference_answer(
        self, room_id: str, participant_id: str, question_id: int, answer: str
    ) -> Dict[str, object]:
        participant = self.store.record_answer(room_id, participant_id, question_id, answer)
        await self._broadcast_progress(room_id)
        await self._maybe_reveal(room_id)
        return progression.progress(participant)

    async def upload_asset(self, room_id: str, participant_id: str, data: str, mime_type: str) -> Room:
        self._require(room_id, participant_id)
        payload = decode_photo(data, mime_type)
        room = self.store.set_photo(room_id, participant_id, payload, mime_type)
        participant = self.store.find_participant(room, participant_id)
        who = participant.name if participant else participant_id
        logger.info("photo_uploaded room=%s participant=%s", room_id, participant_id)
        await self.hub.broadcast_to_room(room_id, PushEvent(type="asset_uploaded", who=who))

        partner_b = room.participant_b
        if partner_b is not None and room.participant_a.has_photo and partner_b.has_photo:
            partner_a = room.participant_a
            self.assets.request_generation(
                room_id,
                AssetInputs(
                    photo_a=partner_a.photo_data or "",
                    mime_a=partner_a.photo_mime_type or "image/jpeg",
                    name_a=partner_a.name,
                    photo_b=partner_b.photo_data or "",
                    mime_b=partner_b.photo_mime_type or "image/jpeg",
                    name_b=partner_b.name,
                    compatibility=room.score_result.compatibility if room.score_result else None,
                ),
            )
        return room

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def connection_opened(self, room_id: str, participant_id: str, connection: Connection) -> Room:
        room, participant = self._require(room_id, participant_id)
        self.hub.register(room_id, participant_id, connection)
        if room.is_full:
            await self.hub.broadcast_except(
                room_id,
                participant_id,
                PushEvent(type="partner_joined", partner={"name": participant.name}),
            )
        return room

    async def connection_closed(self, room_id: str, participant_id: str, connection: Connection) -> None:
        if self.hub.unregister(room_id, participant_id, connection):
            await self.reset_room(room_id)

    async def reset_room(self, room_id: str) -> None:
        """Clear room-scoped trackers once nobody is connected; the room itself stays."""

        with self._claims:
            self._revealed.discard(room_id)
        self.decisions.clear(room_id)
        await self.registry.disconnect(room_id)
        if self.store.get(room_id) is not None:
            self.assets.abandon(room_id)
        for key in [k for k, lock in self._participant_locks.items() if k[0] == room_id and not lock.locked()]:
            del self._participant_locks[key]
        logger.info("room_trackers_cleared room=%s", room_id)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    def submit_message(self, room_id: str, participant_id: str, text: str) -> "asyncio.Task[Any]":
        return self.spawn(self.handle_message(room_id, participant_id, text))

    async def handle_message(self, room_id: str, participant_id: str, text: str, *, replay: bool = False) -> None:
        """Process one message; messages from the same participant run in arrival order."""

        async with self._lock_for(room_id, participant_id):
            await self._process(room_id, participant_id, text, replay=replay)

    async def _process(self, room_id: str, participant_id: str, text: str, *, replay: bool) -> None:
        room = self.store.get(room_id)
        if room is None:
            return
        participant = self.store.find_participant(room, participant_id)
        if participant is None:
            return
        ctx = MessageContext(room_id=room_id, participant_id=participant_id, display_name=participant.name)
        try:
            if not replay:
                action = parse_action(text)
                if action is not None and await self._intercept_action(ctx, action, text):
                    MESSAGES_PROCESSED.labels(outcome="intercepted").inc()
                    return
            await self._respond(ctx, text)
            await self._broadcast_progress(room_id)
            await self._maybe_reveal(room_id)
            MESSAGES_PROCESSED.labels(outcome="ok").inc()
        except Exception:
            MESSAGES_PROCESSED.labels(outcome="error").inc()
            logger.exception("message_processing_failed room=%s participant=%s", room_id, participant_id)
            await self.hub.send_to_participant(room_id, participant_id, PushEvent(type="error", error=GENERIC_ERROR))

    async def _intercept_action(self, ctx: MessageContext, action: Action, text: str) -> bool:
        """Handle an action-choice message. Returns True when the responder must not run."""

        proposal = self.decisions.propose(ctx.room_id, ctx.participant_id, action)
        if not proposal.accepted:
            label = proposal.action.label
            if proposal.chosen_by == ctx.participant_id:
                note = f"You already chose {label}! Let's go with that."
            else:
                note = f"Your partner already chose {label}! Let's go with that."
            await self.hub.send_to_participant(ctx.room_id, ctx.participant_id, PushEvent(type="agent_message", text=note))
            # Retry the handshake if an earlier attempt never produced a URL.
            if self.decisions.needs_authorization(ctx.room_id) and not self.decisions.handshake_open(ctx.room_id):
                await self._start_authorization(ctx, text)
            return True

        await self.hub.broadcast_to_room(
            ctx.room_id,
            PushEvent(type="action_chosen", action=proposal.action.value, chosen_by=ctx.display_name),
        )
        if self.decisions.needs_authorization(ctx.room_id):
            await self._start_authorization(ctx, text)
            return True
        await self.decisions.inject_capabilities(ctx.room_id, proposal.action)
        return False

    async def _start_authorization(self, ctx: MessageContext, text: str) -> None:
        try:
            await self.decisions.begin_authorization(ctx, text)
        except UpstreamFailure as exc:
            logger.warning("authorization_start_failed room=%s err=%s", ctx.room_id, exc.message)
            await self.hub.send_to_participant(ctx.room_id, ctx.participant_id, PushEvent(type="error", error=AUTH_START_ERROR))

    def _room_tools(self, room_id: str) -> List[str]:
        return [c.name for c in self.registry.snapshot() if c.scope == room_id]

    def system_note(self, room: Room, participant: Participant, phase: str) -> str:
        partner = room.partner_of(participant.participant_id)
        lines = [
            f"Current participant: {participant.name}",
            f"Partner: {partner.name if partner else 'not joined yet'}",
            f"Phase: {phase}",
            f"Quiz progress: {len(participant.answers)}/{QUESTION_COUNT} answered",
        ]
        if room.score_result is not None:
            lines.append(f"Taste compatibility: {room.score_result.compatibility}%")
        if room.chosen_action is not None:
            chooser = self.store.find_participant(room, room.chosen_by or "")
            lines.append(f"Chosen plan: {room.chosen_action.label} (picked by {chooser.name if chooser else 'a partner'})")
        tools = self._room_tools(room.room_id)
        if tools:
            lines.append("Food provider tools available: " + ", ".join(tools))
        return "\n".join(lines)

    async def _respond(self, ctx: MessageContext, text: str) -> None:
        room, participant = self._require(ctx.room_id, ctx.participant_id)
        history = self.conversations.history(ctx.room_id, ctx.participant_id)
        phase = derive_phase(
            room,
            participant,
            history_length=len(history),
            auth_pending=self.decisions.pending(ctx.room_id) is not None,
            tools_ready=bool(self._room_tools(ctx.room_id)),
        )
        # Visibility is decided before the turn, as the turn itself may not change it.
        private = is_private(phase)
        reply = await self.responder.reply(ctx, history, text, self.system_note(room, participant, phase), self.registry.snapshot())
        self.conversations.add_message(ctx.room_id, ctx.participant_id, "user", text)
        if not reply:
            return
        self.conversations.add_message(ctx.room_id, ctx.participant_id, "assistant", reply)
        event = PushEvent(type="agent_message", text=reply)
        if private:
            await self.hub.send_to_participant(ctx.room_id, ctx.participant_id, event)
        else:
            await self.hub.broadcast_to_room(ctx.room_id, event)

    # ------------------------------------------------------------------
    # Progress and reveal
    # ------------------------------------------------------------------
    async def _broadcast_progress(self, room_id: str) -> None:
        room = self.store.get(room_id)
        if room is None:
            return
        status = {
            "partner1Complete": room.participant_a.complete,
            "partner2Complete": bool(room.participant_b and room.participant_b.complete),
        }
        await self.hub.broadcast_to_room(room_id, PushEvent(type="progress_update", status=status))

    def _claim_reveal(self, room_id: str) -> bool:
        with self._claims:
            if room_id in self._revealed:
                return False
            self._revealed.add(room_id)
            return True

    def _release_reveal(self, room_id: str) -> None:
        with self._claims:
            self._revealed.discard(room_id)

    async def _maybe_reveal(self, room_id: str) -> bool:
        """Score and reveal once per room, the first time both partners are complete."""

        room = self.store.get(room_id)
        if room is None or room.participant_b is None or not room.both_complete:
            return False
        if not self._claim_reveal(room_id):
            return False
        partner_a, partner_b = room.participant_a, room.participant_b
        try:
            result = scoring.score(
                self.store.answers_snapshot(room_id, partner_a.participant_id),
                self.store.answers_snapshot(room_id, partner_b.participant_id),
            )
        except IncompleteAnswersError:
            self._release_reveal(room_id)
            return False
        self.store.set_score(room_id, result)

        asset = await self.assets.wait(room_id, self._asset_wait)
        REVEALS.inc()
        logger.info(
            "match_revealed room=%s compatibility=%s asset=%s",
            room_id,
            result.compatibility,
            "yes" if asset else "no",
        )
        publish_room_event("match_result", room_id, compatibility=result.compatibility)
        await self.hub.broadcast_to_room(
            room_id,
            PushEvent(
                type="match_result",
                compatibility=result.compatibility,
                recommendations=[r.to_dict() for r in result.recommendations],
                asset=asset,
            ),
        )
        for me, them in ((partner_a, partner_b), (partner_b, partner_a)):
            text = personal_reveal(me, them, result.compatibility)
            self.conversations.add_message(room_id, me.participant_id, "assistant", text)
            await self.hub.send_to_participant(room_id, me.participant_id, PushEvent(type="agent_message", text=text))
        return True

    def is_revealed(self, room_id: str) -> bool:
        with self._claims:
            return room_id in self._revealed

    # ------------------------------------------------------------------
    # Authorization callback
    # ------------------------------------------------------------------
    async def authorization_callback(self, code: str, room_id: str) -> None:
        """Exchange the code, then resume the parked request in the background.

        Raises:
            InvalidInputError: no authorization was started for ``room_id``.
            UpstreamFailure: the code exchange failed.
        """

        await self.provider.exchange_code(code, room_id)
        self.spawn(self._resume_after_authorization(room_id))

    async def _resume_after_authorization(self, room_id: str) -> None:
        try:
            pending = await self.decisions.complete_authorization(room_id)
        except Exception:
            logger.exception("authorization_resume_failed room=%s", room_id)
            return
        if pending is None:
            return
        logger.info("replaying_deferred_message room=%s participant=%s", room_id, pending.ctx.participant_id)
        await self.handle_message(room_id, pending.ctx.participant_id, pending.text, replay=True)


_orchestrator: Optional[Orchestrator] = None


def build_orchestrator(
    store: Optional[InMemoryRoomStore] = None,
    responder: Optional[Responder] = None,
    provider: Optional[Any] = None,
    bridge: Optional[Any] = None,
    image_client: Optional[Any] = None,
    conversations: Optional[ConversationStore] = None,
    asset_wait: Optional[float] = None,
) -> Orchestrator:
    store = store or get_room_store()
    hub = ConnectionHub()
    provider = provider or OAuthProvider()
    bridge = bridge or McpCapabilityBridge()
    registry = CapabilityRegistry(build_builtin_capabilities(store), connector=bridge)
    decisions = DecisionCoordinator(store, hub, provider, registry, bridge)
    assets = AssetGenerator(store, image_client or GeminiImageClient())
    return Orchestrator(
        store=store,
        hub=hub,
        registry=registry,
        decisions=decisions,
        assets=assets,
        responder=responder or LLMResponder(),
        conversations=conversations or get_conversation_store(),
        provider=provider,
        asset_wait=asset_wait,
    )


def get_orchestrator() -> Orchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


def set_orchestrator(orchestrator: Optional[Orchestrator]) -> None:
    global _orchestrator
    _orchestrator = orchestrator
