"""Conversational responder: an LLM with tool calling, and a scripted fallback.

Both implementations take the explicit :class:`MessageContext` and the
capability snapshot for the turn and return the finalized reply text. Any
side effects (recorded answers, remote calls) happen through capability
invocations during the turn.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

from ..domain.models import MessageContext
from ..domain.questions import QUESTION_COUNT
from ..infrastructure.capability_registry import Capability
from .model_router import ModelRouter, ProviderSelection

# Optional import: langchain-openai
try:
    from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage  # type: ignore
    from langchain_openai import ChatOpenAI  # type: ignore
except Exception:  # pragma: no cover - optional import
    ChatOpenAI = None  # type: ignore

logger = logging.getLogger("tastematch.responder")
LOG = logging.getLogger("tastematch.llm")

MAX_LLM_CALLS = int(os.getenv("TASTEMATCH_MAX_LLM_CALLS", "15"))

SYSTEM_PROMPT = """You are "Cupid", a fun, warm and playful Valentine's Day food matchmaker.

Personality: warm, witty and romantic but not cheesy. Use food metaphors naturally, keep replies short for mobile chat.

You are chatting privately with ONE partner of a couple. Guide THIS partner through 6 food preference questions, one at a time.
The system supplies room and user identity to every tool call; never ask for ids.

Phase 1 - introduction and quiz:
- On the first message greet the partner by name, explain the Taste Match in 2-3 sentences and ask if they are ready. Do not call start_quiz yet.
- Once they agree, call start_quiz and present the question with lettered options.
- When they answer, call submit_answer with the question_id and the matching option text, react briefly, then present the next question.
- After all 6 questions, tell them their partner's answers are being compared.

Phase 2 - after the quiz: the server calculates and reveals the match. Do not call calculate_match yourself; chat naturally while they wait.

Phase 3 - action: once the couple picks Order In, Dine Out or Cook Together, use the provider tools you are given to search, book or shop. For Cook Together start with get_recipe.

Never invent quiz questions, answers or compatibility scores. Never reveal the other partner's answers.
"""

INTRO_TEMPLATE = (
    "Hey {name}! Welcome to the Valentine's Taste Match. I'm your Cupid for tonight.\n\n"
    "Here's how it works:\n"
    "1. You and your partner each answer {count} fun food questions\n"
    "2. I calculate your Taste Compatibility Score\n"
    "3. Then I help you plan the perfect Valentine's meal together!\n\n"
    "Ready to find out if you're a match made in food heaven?"
)

OPTION_LETTERS = "ABCDEFGHIJ"


class Responder(Protocol):
    async def reply(
        self,
        ctx: MessageContext,
        history: Sequence[Dict[str, str]],
        text: str,
        system_note: str,
        capabilities: Sequence[Capability],
    ) -> str: ...


def _by_name(capabilities: Sequence[Capability]) -> Dict[str, Capability]:
    return {c.name: c for c in capabilities}


async def invoke_capability(capability: Capability, ctx: MessageContext, args: Dict[str, Any]) -> Any:
    try:
        return await capability.invoke(ctx, args or {})
    except Exception as exc:
        logger.warning("capability_invoke_failed name=%s room=%s err=%s", capability.name, ctx.room_id, exc)
        return {"error": f"{capability.name} failed: {exc}"}


def format_question(question: Dict[str, Any], position: Optional[int] = None) -> str:
    number = position if position is not None else question.get("id")
    lines = [f"Question {number}/{QUESTION_COUNT}: {question['text']}"]
    for letter, option in zip(OPTION_LETTERS, question.get("options") or []):
        lines.append(f"{letter}) {option}")
    return "\n".join(lines)


def resolve_answer(text: str, options: Sequence[str]) -> str:
    """Map a reply onto an option by text, letter, or number; otherwise keep it as free text."""

    cleaned = (text or "").strip()
    lowered = cleaned.lower().rstrip(".!")
    for option in options:
        if lowered == option.lower():
            return option
    match = re.fullmatch(r"\(?([a-z])\)?", lowered)
    if match:
        idx = OPTION_LETTERS.lower().find(match.group(1))
        if 0 <= idx < len(options):
            return options[idx]
    if lowered.isdigit():
        idx = int(lowered) - 1
        if 0 <= idx < len(options):
            return options[idx]
    # Longest first so "non-veg" is not read as "veg".
    for option in sorted(options, key=len, reverse=True):
        if option.lower() in lowered:
            return option
    return cleaned


class ScriptedResponder:
    """Deterministic host that walks the quiz through the built-in capabilities."""

    async def reply(
        self,
        ctx: MessageContext,
        history: Sequence[Dict[str, str]],
        text: str,
        system_note: str,
        capabilities: Sequence[Capability],
    ) -> str:
        caps = _by_name(capabilities)
        if not history:
            return INTRO_TEMPLATE.format(name=ctx.display_name, count=QUESTION_COUNT)

        start = caps.get("start_quiz")
        if start is None:
            return "I'm here! Tell me what you're craving tonight."
        state = await invoke_capability(start, ctx, {})
        question = state.get("question") if isinstance(state, dict) else None
        if not question:
            return await self._after_quiz(ctx, caps, capabilities)

        last_assistant = next((m.get("content") or "" for m in reversed(history) if m.get("role") == "assistant"), "")
        if question["text"] not in last_assistant:
            return f"Let's go!\n\n{format_question(question, state.get('currentQuestion'))}"

        submit = caps.get("submit_answer")
        if submit is None:
            return format_question(question, state.get("currentQuestion"))
        answer = resolve_answer(text, question.get("options") or [])
        result = await invoke_capability(submit, ctx, {"question_id": question["id"], "answer": answer})
        if not isinstance(result, dict) or result.get("error"):
            err = result.get("error") if isinstance(result, dict) else "unexpected result"
            return f"Hmm, I couldn't record that ({err}).\n\n{format_question(question, state.get('currentQuestion'))}"
        if result.get("quizComplete"):
            return (
                f"{answer}, noted! That's all {QUESTION_COUNT} questions, {ctx.display_name}. "
                "Now let's see how you and your partner match up. "
                "I'll reveal your Taste Compatibility as soon as you're both done!"
            )
        upcoming = result.get("nextQuestion")
        if not upcoming:
            return f"{answer}, noted!"
        position = int(result.get("answeredCount") or 0) + 1
        return f"{answer}, great pick!\n\n{format_question(upcoming, position)}"

    async def _after_quiz(
        self,
        ctx: MessageContext,
        caps: Dict[str, Capability],
        capabilities: Sequence[Capability],
    ) -> str:
        remote = [c.name for c in capabilities if c.scope == ctx.room_id]
        if remote:
            return (
                "You're all set with the food provider! I can help with: "
                + ", ".join(remote)
                + ". Tell me what you'd like to do."
            )
        status_cap = caps.get("get_quiz_status")
        status = await invoke_capability(status_cap, ctx, {}) if status_cap else {}
        if isinstance(status, dict) and status.get("bothComplete"):
            return (
                "You've both finished the quiz! Decide together: Order In, Dine Out, or Cook Together? "
                "Either of you can tap to lock in your choice."
            )
        return "You're done with the quiz! Waiting for your partner to finish, then I'll reveal your match."


def _message_text(message: Any) -> str:
    content = getattr(message, "content", "")
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(str(part.get("text") or ""))
    return "".join(parts)


class LLMResponder:
    """Tool-calling chat model behind the model router, with the scripted host as fallback."""

    def __init__(
        self,
        router: Optional[ModelRouter] = None,
        fallback: Optional[Responder] = None,
        max_calls: Optional[int] = None,
        temperature: float = 0.4,
    ) -> None:
        self._router = router or ModelRouter()
        self._fallback = fallback or ScriptedResponder()
        self._max_calls = max_calls or MAX_LLM_CALLS
        self._temperature = temperature

    def _client(self, selection: ProviderSelection):
        if not ChatOpenAI:
            raise RuntimeError("LLM client not available")
        api_key = os.getenv(selection.api_key_env) if selection.api_key_env else None
        if selection.requires_api_key and not api_key:
            raise RuntimeError("LLM not configured")
        base_url = selection.default_base_url
        if selection.base_url_env:
            base_url = os.getenv(selection.base_url_env) or base_url
        LOG.info("llm_selected provider=%s model=%s", selection.name, selection.model)
        return ChatOpenAI(api_key=api_key or "not-needed", base_url=base_url, model=selection.model, temperature=self._temperature)

    def _messages(self, history: Sequence[Dict[str, str]], text: str, system_note: str) -> List[Any]:
        messages: List[Any] = [SystemMessage(content=f"{SYSTEM_PROMPT}\n\n{system_note}".strip())]
        for turn in history:
            content = turn.get("content") or ""
            if turn.get("role") == "assistant":
                messages.append(AIMessage(content=content))
            else:
                messages.append(HumanMessage(content=content))
        messages.append(HumanMessage(content=text))
        return messages

    async def _run(
        self,
        selection: ProviderSelection,
        ctx: MessageContext,
        history: Sequence[Dict[str, str]],
        text: str,
        system_note: str,
        capabilities: Sequence[Capability],
    ) -> str:
        client = self._client(selection)
        caps = _by_name(capabilities)
        model = client.bind_tools([c.as_tool_spec() for c in capabilities]) if capabilities else client
        messages = self._messages(history, text, system_note)
        last_text = ""
        for call_no in range(self._max_calls):
            ai = await model.ainvoke(messages)
            messages.append(ai)
            last_text = _message_text(ai) or last_text
            tool_calls = getattr(ai, "tool_calls", None) or []
            if not tool_calls:
                return last_text
            for call in tool_calls:
                name = call.get("name")
                capability = caps.get(name)
                if capability is None:
                    result: Any = {"error": f"Unknown tool: {name}"}
                else:
                    result = await invoke_capability(capability, ctx, call.get("args") or {})
                LOG.debug("llm_tool_call room=%s tool=%s call=%s", ctx.room_id, name, call_no)
                messages.append(ToolMessage(content=json.dumps(result, default=str), tool_call_id=call.get("id") or name))
        LOG.warning("llm_call_budget_exhausted room=%s max_calls=%s", ctx.room_id, self._max_calls)
        return last_text or "Let me catch my breath. Could you say that again?"

    async def reply(
        self,
        ctx: MessageContext,
        history: Sequence[Dict[str, str]],
        text: str,
        system_note: str,
        capabilities: Sequence[Capability],
    ) -> str:
        remote = any(c.scope == ctx.room_id for c in capabilities)
        selection = self._router.maybe_select_provider("planning" if remote else "conversation")
        if selection is None:
            return await self._fallback.reply(ctx, history, text, system_note, capabilities)
        try:
            reply = await self._run(selection, ctx, history, text, system_note, capabilities)
        except Exception as exc:
            LOG.warning("llm_reply_failed provider=%s err=%s", selection.name, exc)
            return await self._fallback.reply(ctx, history, text, system_note, capabilities)
        if not reply.strip():
            return await self._fallback.reply(ctx, history, text, system_note, capabilities)
        return reply
