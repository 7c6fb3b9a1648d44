"""ConversationOrchestrator: one user turn from stored history to stored reply."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from vibechat.errors import ConstraintError, GenerationError, NotReadyError
from vibechat.llm.models import ChatMessage, ChatRole
from vibechat.memory.models import Message, Role

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from vibechat.capture.models import CaptureRecord
    from vibechat.capture.store import CaptureStore
    from vibechat.llm.client import GenerationClient
    from vibechat.llm.models import SamplingOptions
    from vibechat.memory.models import Conversation, MemoryEntry
    from vibechat.memory.store import MemoryStore

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 60


class TurnStatus(StrEnum):
    COMPLETED = "completed"
    GENERATION_FAILED = "generation_failed"


@dataclass
class TurnResult:
    """Outcome of ``handle_turn``.

    On ``GENERATION_FAILED`` the user message is stored, ``assistant_message``
    is None and ``error`` says why.
    """

    status: TurnStatus
    conversation: Conversation
    user_message: Message
    assistant_message: Message | None = None
    capture: CaptureRecord | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is TurnStatus.COMPLETED

    @property
    def text(self) -> str | None:
        return self.assistant_message.content if self.assistant_message else None


def derive_title(text: str) -> str:
    """Title a new conversation after the first line of its opening message."""
    first_line = text.strip().splitlines()[0].strip() if text.strip() else ""
    if not first_line:
        return "New conversation"
    if len(first_line) > MAX_TITLE_LENGTH:
        return first_line[: MAX_TITLE_LENGTH - 1].rstrip() + "\N{HORIZONTAL ELLIPSIS}"
    return first_line


class ConversationOrchestrator:
    """Composes MemoryStore, GenerationClient and (optionally) CaptureStore.

    Callers must not run two turns for the same conversation at once;
    the orchestrator does not serialize them.
    """

    def __init__(
        self,
        memory: MemoryStore,
        llm: GenerationClient,
        captures: CaptureStore | None = None,
        *,
        auto_capture: bool = False,
        max_memory_entries: int | None = None,
    ) -> None:
        self._memory = memory
        self._llm = llm
        self._captures = captures
        self.auto_capture = auto_capture
        self.max_memory_entries = max_memory_entries

    # -- Turn handling ---------------------------------------------------------

    async def handle_turn(
        self,
        conversation_id: str | None,
        personality_id: str,
        user_text: str,
        *,
        on_text_delta: Callable[[str], Awaitable[None]] | None = None,
        overrides: SamplingOptions | None = None,
    ) -> TurnResult:
        """Store the user's message, generate a reply and store it.

        When *on_text_delta* is given the reply is streamed and each chunk
        is passed to it as it arrives.  Storage and constraint errors
        propagate; generation errors become ``TurnStatus.GENERATION_FAILED``.
        """
        conversation = await self._resolve_conversation(
            conversation_id, personality_id, user_text
        )
        capture = await self._latest_capture()

        user_message = await self._memory.append_message(
            Message.new(
                conversation.id,
                Role.USER,
                user_text,
                screenshot_path=str(capture.image_path) if capture else None,
            )
        )
        conversation = await self._memory.touch_conversation(conversation.id) or conversation

        history = await self._memory.get_history(conversation.id)
        request = await self._build_request(conversation.personality_id, history)

        try:
            if on_text_delta is None:
                reply = await self._llm.generate(request, overrides)
            else:
                reply = await self._stream_reply(request, overrides, on_text_delta)
        except (GenerationError, NotReadyError) as exc:
            logger.warning("Generation failed for %s: %s", conversation.id, exc)
            return TurnResult(
                status=TurnStatus.GENERATION_FAILED,
                conversation=conversation,
                user_message=user_message,
                capture=capture,
                error=str(exc),
            )

        assistant_message = await self._memory.append_message(
            Message.new(conversation.id, Role.ASSISTANT, reply)
        )
        conversation = await self._memory.touch_conversation(conversation.id) or conversation
        logger.info(
            "Turn completed in %s (%d messages, %d chars)",
            conversation.id,
            len(history) + 1,
            len(reply),
        )
        return TurnResult(
            status=TurnStatus.COMPLETED,
            conversation=conversation,
            user_message=user_message,
            assistant_message=assistant_message,
            capture=capture,
        )

    async def _resolve_conversation(
        self, conversation_id: str | None, personality_id: str, user_text: str
    ) -> Conversation:
        if conversation_id is None:
            return await self._memory.create_conversation(personality_id, derive_title(user_text))
        conversation = await self._memory.get_conversation(conversation_id)
        if conversation is None:
            msg = f"Unknown conversation: {conversation_id}"
            raise ConstraintError(msg)
        return conversation

    async def _latest_capture(self) -> CaptureRecord | None:
        if not (self.auto_capture and self._captures):
            return None
        return await asyncio.to_thread(self._captures.latest)

    async def _build_request(
        self, personality_id: str, history: list[Message]
    ) -> list[ChatMessage]:
        """System prompt of the bound personality followed by the full history.

        A missing personality (or an empty prompt) means no system message.
        """
        personality = await self._memory.get_personality(personality_id)
        if personality is None:
            logger.warning("Personality %s not found; using no system prompt", personality_id)
        request: list[ChatMessage] = []
        if personality and personality.system_prompt:
            request.append(ChatMessage(role=ChatRole.SYSTEM, content=personality.system_prompt))
        request.extend(ChatMessage(role=ChatRole(m.role), content=m.content) for m in history)
        return request

    async def _stream_reply(
        self,
        request: list[ChatMessage],
        overrides: SamplingOptions | None,
        on_text_delta: Callable[[str], Awaitable[None]],
    ) -> str:
        chunks: list[str] = []
        async with aclosing(self._llm.stream_generate(request, overrides)) as stream:
            async for chunk in stream:
                chunks.append(chunk)
                await on_text_delta(chunk)
        return "".join(chunks)

    # -- Memory entries --------------------------------------------------------

    async def remember(
        self,
        conversation_id: str,
        key: str,
        value: str,
        importance: int = 0,
    ) -> MemoryEntry:
        """Store a distilled fact and keep the total under the configured cap."""
        entry = await self._memory.add_memory_entry(conversation_id, key, value, importance)
        if self.max_memory_entries is not None:
            await self._memory.prune_memory_entries(self.max_memory_entries)
        return entry
