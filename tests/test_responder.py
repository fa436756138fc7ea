import pytest
from langchain_core.messages import AIMessage

from src.tastematch.domain.models import MessageContext
from src.tastematch.infrastructure.capability_registry import Capability
from src.tastematch.services.builtin_tools import build_builtin_capabilities
from src.tastematch.services.model_router import ModelRouter
from src.tastematch.services.responder import (
    INTRO_TEMPLATE,
    LLMResponder,
    ScriptedResponder,
    format_question,
    resolve_answer,
)

from .utils import ANSWERS_A, answer_all

DIET = ["Veg", "Non-Veg", "Egg only", "Vegan"]


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Veg", "Veg"),
        ("non-veg", "Non-Veg"),
        ("I'm strictly non-veg!", "Non-Veg"),
        ("B", "Non-Veg"),
        ("(d)", "Vegan"),
        ("3", "Egg only"),
        ("pescatarian", "pescatarian"),
        ("9", "9"),
    ],
)
def test_resolve_answer(text, expected):
    assert resolve_answer(text, DIET) == expected


def test_format_question():
    text = format_question({"id": 3, "text": "Any dietary preferences?", "options": DIET}, 3)
    assert text.splitlines() == [
        "Question 3/6: Any dietary preferences?",
        "A) Veg",
        "B) Non-Veg",
        "C) Egg only",
        "D) Vegan",
    ]


@pytest.fixture
def ctx(full_room):
    return MessageContext(room_id=full_room.room_id, participant_id="p1", display_name="Priya")


@pytest.fixture
def caps(store):
    return build_builtin_capabilities(store)


@pytest.mark.asyncio
async def test_scripted_walks_the_quiz(ctx, caps, store, full_room):
    host = ScriptedResponder()
    history = []

    async def say(text):
        reply = await host.reply(ctx, history, text, "", caps)
        history.extend([{"role": "user", "content": text}, {"role": "assistant", "content": reply}])
        return reply

    intro = await say("hi")
    assert intro == INTRO_TEMPLATE.format(name="Priya", count=6)

    first = await say("yes!")
    assert first.startswith("Let's go!")
    assert "Question 1/6: What's your go-to cuisine?" in first

    second = await say("a")
    assert second.startswith("North Indian, great pick!")
    assert "Question 2/6" in second

    for answer in ANSWERS_A[1:5]:
        await say(answer)
    done = await say("Biriyani/Rice")
    assert "That's all 6 questions, Priya" in done
    participant = store.find_participant(full_room, "p1")
    assert participant.complete
    assert [a.answer for a in participant.answers] == ANSWERS_A

    waiting = await say("so?")
    assert "Waiting for your partner" in waiting


@pytest.mark.asyncio
async def test_scripted_after_both_complete_and_with_remote_tools(ctx, caps, store, full_room):
    answer_all(store, full_room.room_id, "p1", ANSWERS_A)
    answer_all(store, full_room.room_id, "p2", ANSWERS_A)
    history = [{"role": "assistant", "content": "earlier"}]
    reply = await ScriptedResponder().reply(ctx, history, "what now", "", caps)
    assert "Order In, Dine Out, or Cook Together" in reply

    async def remote(c, a):
        return {}

    with_remote = caps + [Capability(name="search_restaurants", description="", invoke=remote, scope=full_room.room_id)]
    reply = await ScriptedResponder().reply(ctx, history, "what now", "", with_remote)
    assert "search_restaurants" in reply

    other_room = caps + [Capability(name="book_table", description="", invoke=remote, scope="someone-else")]
    reply = await ScriptedResponder().reply(ctx, history, "what now", "", other_room)
    assert "book_table" not in reply


@pytest.mark.asyncio
async def test_llm_responder_falls_back_without_provider(ctx, caps):
    host = LLMResponder(router=ModelRouter(env={}))
    assert await host.reply(ctx, [], "hi", "", caps) == INTRO_TEMPLATE.format(name="Priya", count=6)


class _FakeModel:
    def __init__(self, script):
        self.script = list(script)
        self.seen = []
        self.bound = None

    def bind_tools(self, specs):
        self.bound = specs
        return self

    async def ainvoke(self, messages):
        self.seen.append(list(messages))
        return self.script.pop(0)


@pytest.mark.asyncio
async def test_llm_responder_runs_tool_calls_with_context(ctx, caps, store, full_room, monkeypatch):
    fake = _FakeModel(
        [
            AIMessage(content="", tool_calls=[{"name": "submit_answer", "args": {"question_id": 1, "answer": "Italian"}, "id": "c1"}]),
            AIMessage(content="Italian, lovely choice!"),
        ]
    )
    host = LLMResponder(router=ModelRouter(env={"OPENAI_API_KEY": "k"}))
    monkeypatch.setattr(host, "_client", lambda selection: fake)
    reply = await host.reply(ctx, [{"role": "assistant", "content": "Question 1/6"}], "Italian please", "Phase: collecting", caps)
    assert reply == "Italian, lovely choice!"
    assert store.answers_snapshot(full_room.room_id, "p1")[0].answer == "Italian"
    assert [s["function"]["name"] for s in fake.bound][:2] == ["start_quiz", "submit_answer"]
    tool_message = fake.seen[1][-1]
    assert tool_message.tool_call_id == "c1"
    assert "Phase: collecting" in fake.seen[0][0].content


@pytest.mark.asyncio
async def test_llm_responder_falls_back_on_error(ctx, caps, monkeypatch):
    host = LLMResponder(router=ModelRouter(env={"OPENAI_API_KEY": "k"}))

    def broken(selection):
        raise RuntimeError("LLM not configured")

    monkeypatch.setattr(host, "_client", broken)
    assert (await host.reply(ctx, [], "hi", "", caps)).startswith("Hey Priya!")


@pytest.mark.asyncio
async def test_llm_responder_stops_at_call_budget(ctx, caps, monkeypatch):
    looping = [
        AIMessage(content="thinking", tool_calls=[{"name": "get_quiz_status", "args": {}, "id": f"c{i}"}])
        for i in range(3)
    ]
    fake = _FakeModel(looping)
    host = LLMResponder(router=ModelRouter(env={"OPENAI_API_KEY": "k"}), max_calls=3)
    monkeypatch.setattr(host, "_client", lambda selection: fake)
    assert await host.reply(ctx, [], "hi", "", caps) == "thinking"
    assert len(fake.seen) == 3


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_to_model(ctx, caps, monkeypatch):
    fake = _FakeModel(
        [
            AIMessage(content="", tool_calls=[{"name": "teleport", "args": {}, "id": "t1"}]),
            AIMessage(content="ok"),
        ]
    )
    host = LLMResponder(router=ModelRouter(env={"OPENAI_API_KEY": "k"}))
    monkeypatch.setattr(host, "_client", lambda selection: fake)
    assert await host.reply(ctx, [], "hi", "", caps) == "ok"
    assert "Unknown tool: teleport" in fake.seen[1][-1].content


@pytest.mark.asyncio
async def test_planning_purpose_once_room_has_remote_tools(ctx, caps, full_room):
    purposes = []

    class _Router:
        def maybe_select_provider(self, purpose):
            purposes.append(purpose)
            return None

    async def remote(c, a):
        return {}

    host = LLMResponder(router=_Router())
    await host.reply(ctx, [], "hi", "", caps)
    await host.reply(ctx, [], "hi", "", caps + [Capability(name="search", description="", invoke=remote, scope=full_room.room_id)])
    await host.reply(ctx, [], "hi", "", caps + [Capability(name="search", description="", invoke=remote, scope="elsewhere")])
    assert purposes == ["conversation", "planning", "conversation"]
