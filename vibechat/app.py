"""The start-up context handed to the hosting shell.

Built once at start-up and passed around explicitly; there are no
module-level client singletons.  ``capture_now`` and ``send_message`` are
the two operations the shell calls, and they always return a
``ShellResponse`` rather than raising.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from vibechat.capture.scheduler import CaptureScheduler
from vibechat.capture.store import CaptureStore
from vibechat.config import settings as default_settings
from vibechat.errors import VibeChatError
from vibechat.llm.client import GenerationClient
from vibechat.memory.store import MemoryStore
from vibechat.orchestrator import ConversationOrchestrator, TurnStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from vibechat.config import Settings

logger = logging.getLogger(__name__)

# Setting keys persisted in the memory database
PREF_AUTO_CAPTURE = "auto_capture_enabled"
PREF_CAPTURE_INTERVAL = "capture_interval_seconds"
PREF_MAX_MEMORY_ENTRIES = "max_memory_entries"

_TRUTHY = {"1", "true", "yes", "on"}


class ShellResponse(BaseModel):
    """Determinate success/failure result returned across the shell boundary."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None


class VibeChat:
    """Owns the stores, the generation client and the capture scheduler."""

    def __init__(
        self,
        cfg: Settings,
        memory: MemoryStore,
        captures: CaptureStore,
        llm: GenerationClient,
    ) -> None:
        self.settings = cfg
        self.memory = memory
        self.captures = captures
        self.llm = llm
        self.scheduler = CaptureScheduler(
            captures,
            interval_seconds=cfg.capture_interval_seconds,
            max_age=timedelta(hours=cfg.capture_max_age_hours),
            sweep_interval=timedelta(minutes=cfg.capture_sweep_interval_minutes),
        )
        self.orchestrator = ConversationOrchestrator(
            memory,
            llm,
            captures,
            auto_capture=cfg.auto_capture_enabled,
            max_memory_entries=cfg.max_memory_entries,
        )

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> VibeChat:
        cfg = cfg or default_settings
        return cls(
            cfg,
            memory=MemoryStore(cfg.database_path),
            captures=CaptureStore(cfg.capture_dir),
            llm=GenerationClient.from_settings(cfg),
        )

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Open the memory store, connect to the model, start auto-capture.

        ``LLMConnectionError`` propagates: without a model there is nothing
        to start.
        """
        await self.memory.initialize()
        await self._load_preferences()
        await self.llm.initialize()
        if self.orchestrator.auto_capture:
            await self.scheduler.start()
        logger.info("VibeChat started (model=%s)", self.llm.model)

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.llm.aclose()
        logger.info("VibeChat stopped")

    async def _load_preferences(self) -> None:
        prefs = await self.memory.get_settings()
        for key, value in prefs.items():
            try:
                self._apply_preference(key, value)
            except ValueError:
                logger.warning("Ignoring invalid stored setting %s=%r", key, value)

    def _apply_preference(self, key: str, value: str) -> None:
        if key == PREF_AUTO_CAPTURE:
            self.orchestrator.auto_capture = value.strip().lower() in _TRUTHY
        elif key == PREF_CAPTURE_INTERVAL:
            self.scheduler.reschedule(int(value))
        elif key == PREF_MAX_MEMORY_ENTRIES:
            self.orchestrator.max_memory_entries = int(value)

    async def set_preference(self, key: str, value: str) -> None:
        """Persist a preference and apply it to the running context.

        Raises ``ValueError`` for a value that cannot be applied; nothing is
        stored in that case.
        """
        self._apply_preference(key, value)
        await self.memory.upsert_setting(key, value)
        if key == PREF_AUTO_CAPTURE:
            if self.orchestrator.auto_capture and not self.scheduler.running:
                await self.scheduler.start()
            elif not self.orchestrator.auto_capture and self.scheduler.running:
                await self.scheduler.stop()

    # -- Shell operations ------------------------------------------------------

    async def capture_now(self) -> ShellResponse:
        """Take one screen capture on demand."""
        try:
            record = await asyncio.to_thread(self.captures.capture)
        except VibeChatError as exc:
            logger.warning("Capture failed: %s", exc)
            return ShellResponse(success=False, error=str(exc))
        return ShellResponse(success=True, data=record.model_dump(mode="json"))

    async def list_captures(self) -> ShellResponse:
        """List stored captures, newest first."""
        try:
            captures = await asyncio.to_thread(self.captures.list_captures)
        except OSError as exc:
            logger.warning("Could not list captures: %s", exc)
            return ShellResponse(success=False, error=str(exc))
        return ShellResponse(success=True, data={"captures": captures})

    async def send_message(
        self,
        conversation_id: str | None,
        personality_id: str,
        text: str,
        on_text_delta: Callable[[str], Awaitable[None]] | None = None,
    ) -> ShellResponse:
        """Run one chat turn and report it as a ShellResponse."""
        try:
            result = await self.orchestrator.handle_turn(
                conversation_id, personality_id, text, on_text_delta=on_text_delta
            )
        except VibeChatError as exc:
            logger.warning("Chat turn failed: %s", exc)
            return ShellResponse(success=False, error=str(exc))
        except Exception:
            logger.exception("Unexpected error while handling a chat turn")
            return ShellResponse(success=False, error="Unexpected internal error")

        data: dict[str, Any] = {
            "status": str(result.status),
            "conversation": result.conversation.model_dump(mode="json"),
            "user_message": result.user_message.model_dump(mode="json"),
            "assistant_message": (
                result.assistant_message.model_dump(mode="json")
                if result.assistant_message
                else None
            ),
        }
        if result.status is TurnStatus.GENERATION_FAILED:
            return ShellResponse(success=False, data=data, error=result.error)
        return ShellResponse(success=True, data=data)
