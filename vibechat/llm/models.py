"""Request and status models for the generation client."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class ChatRole(StrEnum):
    """Roles accepted by the chat endpoint."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """One message of a chat request."""

    role: ChatRole
    content: str


class SamplingOptions(BaseModel):
    """Sampling parameters sent as ``options`` with every chat request.

    Values are passed through unchecked; the endpoint decides what is in
    range.
    """

    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    num_predict: int = 500

    def merged(self, overrides: SamplingOptions | None) -> SamplingOptions:
        """Return a copy with every field *overrides* explicitly set applied.

        Fields left at their default in *overrides* do not win, so
        ``SamplingOptions(temperature=0.0)`` only changes the temperature.
        """
        if overrides is None:
            return self
        return self.model_copy(update=overrides.model_dump(exclude_unset=True))


class ModelStatus(BaseModel):
    """Readiness snapshot of the generation client."""

    ready: bool
    model: str
