"""Relational memory: conversations, messages, personalities, memory entries, settings."""

from vibechat.memory.models import Conversation, MemoryEntry, Message, Personality, Role
from vibechat.memory.store import MemoryStore

__all__ = ["Conversation", "MemoryEntry", "MemoryStore", "Message", "Personality", "Role"]
