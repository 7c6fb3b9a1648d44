"""Data models for conversations, messages, personalities and memory entries."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_db_time(value: datetime) -> str:
    """Serialize a timestamp so that text ordering matches time ordering."""
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def make_id(prefix: str) -> str:
    """Generate an opaque unique id such as ``conv_<hex>``."""
    return f"{prefix}_{uuid.uuid4().hex}"


class Role(StrEnum):
    """Who wrote a stored message. System prompts are never stored."""

    USER = "user"
    ASSISTANT = "assistant"


class Conversation(BaseModel):
    """A titled, personality-bound thread of messages."""

    id: str
    created_at: datetime
    updated_at: datetime
    personality_id: str
    title: str
    summary: str | None = None

    @classmethod
    def from_row(cls, row: tuple) -> Conversation:
        return cls(
            id=row[0],
            created_at=row[1],
            updated_at=row[2],
            personality_id=row[3],
            title=row[4],
            summary=row[5],
        )


class Message(BaseModel):
    """A single immutable conversation message.

    ``screenshot_path`` is a weak reference into the capture directory;
    the file it names may have been evicted since.
    """

    id: str
    conversation_id: str
    role: Role
    content: str
    screenshot_path: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        conversation_id: str,
        role: Role | str,
        content: str,
        screenshot_path: str | None = None,
    ) -> Message:
        """Build a message with a fresh id stamped with the current time."""
        return cls(
            id=make_id("msg"),
            conversation_id=conversation_id,
            role=role,
            content=content,
            screenshot_path=screenshot_path,
        )

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``messages`` column order."""
        return (
            self.id,
            self.conversation_id,
            str(self.role),
            self.content,
            self.screenshot_path,
            to_db_time(self.created_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        return cls(
            id=row[0],
            conversation_id=row[1],
            role=row[2],
            content=row[3],
            screenshot_path=row[4],
            created_at=row[5],
        )


class Personality(BaseModel):
    """A named system-prompt profile shaping generation tone."""

    id: str
    name: str
    description: str = ""
    system_prompt: str = ""
    traits: list[str] = Field(default_factory=list)
    color: str = ""
    avatar: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_row(self) -> tuple:
        return (
            self.id,
            self.name,
            self.description,
            self.system_prompt,
            json.dumps(self.traits),
            self.color,
            self.avatar,
            to_db_time(self.created_at),
            to_db_time(self.updated_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Personality:
        return cls(
            id=row[0],
            name=row[1],
            description=row[2] or "",
            system_prompt=row[3] or "",
            traits=json.loads(row[4]) if row[4] else [],
            color=row[5] or "",
            avatar=row[6] or "",
            created_at=row[7],
            updated_at=row[8],
        )


class MemoryEntry(BaseModel):
    """A distilled fact extracted from a conversation."""

    id: str
    conversation_id: str
    key: str
    value: str
    importance: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: tuple) -> MemoryEntry:
        return cls(
            id=row[0],
            conversation_id=row[1],
            key=row[2],
            value=row[3],
            importance=row[4],
            created_at=row[5],
        )
