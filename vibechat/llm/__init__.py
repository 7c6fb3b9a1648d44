"""Generation client for the local model endpoint."""

from vibechat.llm.client import GenerationClient
from vibechat.llm.models import ChatMessage, ChatRole, ModelStatus, SamplingOptions

__all__ = ["ChatMessage", "ChatRole", "GenerationClient", "ModelStatus", "SamplingOptions"]
