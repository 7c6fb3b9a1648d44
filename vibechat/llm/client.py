"""Async client for an Ollama-compatible chat endpoint, blocking and streamed."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from vibechat.errors import GenerationError, LLMConnectionError, NotReadyError
from vibechat.llm.models import ChatMessage, ModelStatus, SamplingOptions

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from vibechat.config import Settings

logger = logging.getLogger(__name__)


def _parse_fragment(line: str) -> dict[str, Any] | None:
    """Decode one newline-delimited stream fragment; None if blank or malformed."""
    line = line.strip()
    if not line:
        return None
    try:
        fragment = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Ignoring malformed stream fragment: %s", line[:120])
        return None
    if not isinstance(fragment, dict):
        logger.debug("Ignoring non-object stream fragment: %s", line[:120])
        return None
    return fragment


def _fragment_content(fragment: dict[str, Any]) -> str:
    message = fragment.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""


class GenerationClient:
    """Talks to the model-serving endpoint.

    The client is not usable until ``initialize()`` has completed a round
    trip to the endpoint.  Pass *transport* to swap the network layer
    (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        api_url: str,
        model: str,
        options: SamplingOptions | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model = model
        self._options = options or SamplingOptions()
        self._ready = False
        self._http = httpx.AsyncClient(base_url=api_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        cfg: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GenerationClient:
        return cls(
            api_url=cfg.llm_api_url,
            model=cfg.llm_model,
            options=SamplingOptions(
                temperature=cfg.llm_temperature,
                top_p=cfg.llm_top_p,
                top_k=cfg.llm_top_k,
                num_predict=cfg.llm_num_predict,
            ),
            timeout=cfg.llm_timeout_seconds,
            transport=transport,
        )

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def model(self) -> str:
        return self._model

    @property
    def options(self) -> SamplingOptions:
        return self._options

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> GenerationClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- Introspection ---------------------------------------------------------

    async def _fetch_model_names(self) -> list[str]:
        """List model names; any failure leaves the client not-ready."""
        try:
            response = await self._http.get("/tags")
            response.raise_for_status()
            models = response.json()["models"]
            return [m["name"] for m in models]
        except httpx.HTTPError as exc:
            self._ready = False
            msg = f"Failed to connect to LLM endpoint {self._http.base_url}: {exc}"
            raise LLMConnectionError(msg) from exc
        except (ValueError, KeyError, TypeError) as exc:
            self._ready = False
            msg = f"Unexpected response from {self._http.base_url}/tags: {exc!r}"
            raise LLMConnectionError(msg) from exc

    async def initialize(self) -> None:
        """Verify the endpoint by listing its models; mark the client ready.

        Raises ``LLMConnectionError`` and becomes not-ready on any failure,
        even if an earlier initialize succeeded.
        """
        names = await self._fetch_model_names()
        self._ready = True
        logger.info("LLM client ready. Available models: %d", len(names))
        if not any(name == self._model or name.split(":")[0] == self._model for name in names):
            logger.warning("Model %s is not installed on the endpoint", self._model)

    async def list_models(self) -> list[str]:
        """Return the names of the models the endpoint serves."""
        return await self._fetch_model_names()

    def status(self) -> ModelStatus:
        return ModelStatus(ready=self._ready, model=self._model)

    # -- Generation ------------------------------------------------------------

    def _require_ready(self) -> None:
        if not self._ready:
            msg = "LLM client not initialized"
            raise NotReadyError(msg)

    def _build_payload(
        self,
        messages: Sequence[ChatMessage],
        overrides: SamplingOptions | None,
        *,
        stream: bool,
    ) -> dict[str, Any]:
        return {
            "model": self._model,
            "messages": [m.model_dump(mode="json") for m in messages],
            "stream": stream,
            "options": self._options.merged(overrides).model_dump(),
        }

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        overrides: SamplingOptions | None = None,
    ) -> str:
        """Single blocking chat round trip. Returns the assistant text."""
        self._require_ready()
        payload = self._build_payload(messages, overrides, stream=False)
        try:
            response = await self._http.post("/chat", json=payload)
            response.raise_for_status()
            content = response.json()["message"]["content"]
        except httpx.HTTPError as exc:
            msg = f"LLM generation failed: {exc}"
            raise GenerationError(msg) from exc
        except (ValueError, KeyError, TypeError) as exc:
            msg = f"LLM generation returned a malformed response: {exc!r}"
            raise GenerationError(msg) from exc
        if not isinstance(content, str):
            msg = f"LLM generation returned non-text content: {content!r}"
            raise GenerationError(msg)
        return content

    def stream_generate(
        self,
        messages: Sequence[ChatMessage],
        overrides: SamplingOptions | None = None,
    ) -> AsyncIterator[str]:
        """Stream the assistant reply as text chunks.

        Readiness is checked immediately; the request is only sent once
        the caller starts iterating.  Closing the iterator early (e.g. via
        ``contextlib.aclosing``) releases the connection.
        """
        self._require_ready()
        payload = self._build_payload(messages, overrides, stream=True)
        return self._stream(payload)

    async def _stream(self, payload: dict[str, Any]) -> AsyncIterator[str]:
        try:
            async with self._http.stream("POST", "/chat", json=payload) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    fragment = _parse_fragment(line)
                    if fragment is None:
                        continue
                    if "error" in fragment:
                        msg = f"LLM streaming failed: {fragment['error']}"
                        raise GenerationError(msg)
                    content = _fragment_content(fragment)
                    if content:
                        yield content
                    if fragment.get("done") is True:
                        return
        except httpx.HTTPError as exc:
            msg = f"LLM streaming failed: {exc}"
            raise GenerationError(msg) from exc
