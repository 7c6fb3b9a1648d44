"""Tests for ConversationOrchestrator: one turn end to end against a real MemoryStore."""

from __future__ import annotations

from typing import Any

import pytest

from vibechat.capture.store import CaptureStore
from vibechat.errors import ConstraintError, GenerationError, NotReadyError
from vibechat.llm.models import ChatMessage, ChatRole, SamplingOptions
from vibechat.memory.models import Personality, Role
from vibechat.memory.store import MemoryStore
from vibechat.orchestrator import ConversationOrchestrator, TurnStatus, derive_title

# ---------------------------------------------------------------------------
# Helpers: a stand-in GenerationClient
# ---------------------------------------------------------------------------


class _FakeLLM:
    """Records every request and answers with a canned reply or error."""

    def __init__(
        self,
        reply: str = "hello there",
        chunks: list[str] | None = None,
        error: Exception | None = None,
        fail_after: int | None = None,
    ) -> None:
        self.reply = reply
        self.chunks = chunks or [reply]
        self.error = error
        self.fail_after = fail_after
        self.requests: list[list[ChatMessage]] = []
        self.overrides: list[Any] = []

    async def generate(self, messages, overrides=None) -> str:
        self.requests.append(list(messages))
        self.overrides.append(overrides)
        if self.error:
            raise self.error
        return self.reply

    def stream_generate(self, messages, overrides=None):
        if isinstance(self.error, NotReadyError):
            raise self.error
        self.requests.append(list(messages))
        self.overrides.append(overrides)
        return self._stream()

    async def _stream(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i >= self.fail_after:
                raise GenerationError("connection reset mid-stream")
            yield chunk


def _orchestrator(memory: MemoryStore, llm: _FakeLLM, **kwargs) -> ConversationOrchestrator:
    return ConversationOrchestrator(memory, llm, **kwargs)


# ---------------------------------------------------------------------------
# Blocking turns
# ---------------------------------------------------------------------------


async def test_new_conversation_turn(memory: MemoryStore) -> None:
    orchestrator = _orchestrator(memory, _FakeLLM(reply="hello there"))

    result = await orchestrator.handle_turn(None, "sage", "hi")

    assert result.status is TurnStatus.COMPLETED
    assert result.ok
    assert result.text == "hello there"
    assert result.conversation.personality_id == "sage"

    history = await memory.get_history(result.conversation.id)
    assert [(m.role, m.content) for m in history] == [
        (Role.USER, "hi"),
        (Role.ASSISTANT, "hello there"),
    ]
    assert result.assistant_message == history[1]
    assert result.user_message == history[0]


async def test_generation_failure_keeps_user_message(memory: MemoryStore) -> None:
    orchestrator = _orchestrator(memory, _FakeLLM(error=GenerationError("endpoint down")))

    result = await orchestrator.handle_turn(None, "sage", "hi")

    assert result.status is TurnStatus.GENERATION_FAILED
    assert not result.ok
    assert result.assistant_message is None
    assert result.text is None
    assert "endpoint down" in result.error

    history = await memory.get_history(result.conversation.id)
    assert [(m.role, m.content) for m in history] == [(Role.USER, "hi")]


async def test_not_ready_is_reported_as_generation_failure(memory: MemoryStore) -> None:
    orchestrator = _orchestrator(memory, _FakeLLM(error=NotReadyError("not initialized")))

    result = await orchestrator.handle_turn(None, "sage", "hi")

    assert result.status is TurnStatus.GENERATION_FAILED
    assert len(await memory.get_history(result.conversation.id)) == 1


async def test_request_starts_with_personality_system_prompt(memory: MemoryStore) -> None:
    llm = _FakeLLM()
    await _orchestrator(memory, llm).handle_turn(None, "sage", "hi")

    sage = await memory.get_personality("sage")
    request = llm.requests[0]
    assert request[0] == ChatMessage(role=ChatRole.SYSTEM, content=sage.system_prompt)
    assert request[1:] == [ChatMessage(role=ChatRole.USER, content="hi")]


async def test_missing_personality_falls_back_to_no_system_prompt(memory: MemoryStore) -> None:
    llm = _FakeLLM()

    result = await _orchestrator(memory, llm).handle_turn(None, "ghost", "hi")

    assert result.ok
    assert llm.requests[0] == [ChatMessage(role=ChatRole.USER, content="hi")]


async def test_empty_system_prompt_sends_no_system_message(memory: MemoryStore) -> None:
    await memory.upsert_personality(Personality(id="blank", name="Blank"))
    llm = _FakeLLM()

    await _orchestrator(memory, llm).handle_turn(None, "blank", "hi")

    assert [m.role for m in llm.requests[0]] == [ChatRole.USER]


async def test_follow_up_turn_sends_full_history(memory: MemoryStore) -> None:
    llm = _FakeLLM(reply="first reply")
    orchestrator = _orchestrator(memory, llm)
    first = await orchestrator.handle_turn(None, "sage", "one")

    llm.reply = "second reply"
    second = await orchestrator.handle_turn(first.conversation.id, "optimist", "two")

    assert second.conversation.id == first.conversation.id
    request = llm.requests[1]
    assert [(m.role, m.content) for m in request[1:]] == [
        (ChatRole.USER, "one"),
        (ChatRole.ASSISTANT, "first reply"),
        (ChatRole.USER, "two"),
    ]
    # The conversation stays bound to the personality it was created with
    sage = await memory.get_personality("sage")
    assert request[0].content == sage.system_prompt
    assert len(await memory.get_history(first.conversation.id)) == 4


async def test_unknown_conversation_id_raises(memory: MemoryStore) -> None:
    orchestrator = _orchestrator(memory, _FakeLLM())
    with pytest.raises(ConstraintError):
        await orchestrator.handle_turn("conv_missing", "sage", "hi")


async def test_turn_bumps_conversation_updated_at(memory: MemoryStore) -> None:
    result = await _orchestrator(memory, _FakeLLM()).handle_turn(None, "sage", "hi")

    assert result.conversation.updated_at > result.conversation.created_at
    stored = await memory.get_conversation(result.conversation.id)
    assert stored == result.conversation


async def test_title_derived_from_first_message(memory: MemoryStore) -> None:
    result = await _orchestrator(memory, _FakeLLM()).handle_turn(
        None, "sage", "Plan my week\nwith details"
    )
    assert result.conversation.title == "Plan my week"


async def test_overrides_are_passed_through(memory: MemoryStore) -> None:
    llm = _FakeLLM()
    overrides = SamplingOptions(temperature=0.1)

    await _orchestrator(memory, llm).handle_turn(None, "sage", "hi", overrides=overrides)

    assert llm.overrides == [overrides]


# ---------------------------------------------------------------------------
# Streaming turns
# ---------------------------------------------------------------------------


async def test_streaming_turn_forwards_chunks_and_stores_joined_text(
    memory: MemoryStore,
) -> None:
    llm = _FakeLLM(chunks=["hel", "lo ", "there"])
    seen: list[str] = []

    async def on_delta(text: str) -> None:
        seen.append(text)

    result = await _orchestrator(memory, llm).handle_turn(
        None, "sage", "hi", on_text_delta=on_delta
    )

    assert seen == ["hel", "lo ", "there"]
    assert result.text == "hello there"
    history = await memory.get_history(result.conversation.id)
    assert history[-1].content == "hello there"


async def test_streaming_failure_mid_way_writes_no_assistant_message(
    memory: MemoryStore,
) -> None:
    llm = _FakeLLM(chunks=["par", "tial"], fail_after=1)
    seen: list[str] = []

    async def on_delta(text: str) -> None:
        seen.append(text)

    result = await _orchestrator(memory, llm).handle_turn(
        None, "sage", "hi", on_text_delta=on_delta
    )

    assert result.status is TurnStatus.GENERATION_FAILED
    assert seen == ["par"]
    history = await memory.get_history(result.conversation.id)
    assert [m.role for m in history] == [Role.USER]


async def test_streaming_not_ready_is_generation_failure(memory: MemoryStore) -> None:
    llm = _FakeLLM(error=NotReadyError("not initialized"))

    async def on_delta(text: str) -> None:
        raise AssertionError("no chunks expected")

    result = await _orchestrator(memory, llm).handle_turn(
        None, "sage", "hi", on_text_delta=on_delta
    )
    assert result.status is TurnStatus.GENERATION_FAILED


# ---------------------------------------------------------------------------
# Capture context
# ---------------------------------------------------------------------------


async def test_auto_capture_attaches_latest_capture_path(
    memory: MemoryStore, captures: CaptureStore
) -> None:
    record = captures.capture()
    llm = _FakeLLM()
    orchestrator = _orchestrator(memory, llm, captures=captures, auto_capture=True)

    result = await orchestrator.handle_turn(None, "sage", "what is on my screen?")

    assert result.capture is not None
    assert result.capture.image_path == record.image_path
    assert result.user_message.screenshot_path == str(record.image_path)
    # The path is metadata only; it is not put into the model text
    assert all(str(record.image_path) not in m.content for m in llm.requests[0])


async def test_auto_capture_with_no_captures(memory: MemoryStore, captures: CaptureStore) -> None:
    orchestrator = _orchestrator(memory, _FakeLLM(), captures=captures, auto_capture=True)

    result = await orchestrator.handle_turn(None, "sage", "hi")

    assert result.capture is None
    assert result.user_message.screenshot_path is None


async def test_auto_capture_disabled_ignores_captures(
    memory: MemoryStore, captures: CaptureStore
) -> None:
    captures.capture()
    orchestrator = _orchestrator(memory, _FakeLLM(), captures=captures, auto_capture=False)

    result = await orchestrator.handle_turn(None, "sage", "hi")

    assert result.capture is None
    assert result.user_message.screenshot_path is None


# ---------------------------------------------------------------------------
# remember / derive_title
# ---------------------------------------------------------------------------


async def test_remember_prunes_to_cap(memory: MemoryStore) -> None:
    orchestrator = _orchestrator(memory, _FakeLLM(), max_memory_entries=2)
    result = await orchestrator.handle_turn(None, "sage", "hi")
    conv_id = result.conversation.id

    await orchestrator.remember(conv_id, "a", "1", importance=1)
    await orchestrator.remember(conv_id, "b", "2", importance=5)
    await orchestrator.remember(conv_id, "c", "3", importance=3)

    entries = await memory.get_memory_entries(conv_id)
    assert [e.key for e in entries] == ["b", "c"]


def test_derive_title_truncates_long_lines() -> None:
    title = derive_title("x" * 200)
    assert len(title) == 60
    assert title.endswith("\N{HORIZONTAL ELLIPSIS}")


def test_derive_title_blank_text() -> None:
    assert derive_title("   \n  ") == "New conversation"
