"""Streaming chat-model backends for ctxrag."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, Mapping, Protocol, Sequence

import httpx

from ctxrag.errors import StreamTerminatedError

if TYPE_CHECKING:
    from ctxrag.config import Settings

Message = Mapping[str, str]


def build_ollama_client(settings: "Settings") -> httpx.AsyncClient:
    """Shared, long-lived HTTP client for every Ollama call of the process."""

    timeout = httpx.Timeout(settings.request_timeout_seconds, connect=10.0)
    return httpx.AsyncClient(base_url=settings.ollama_url, timeout=timeout)


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "gemma3:12b"
    temperature: float | None = None


class ChatModel(Protocol):
    """Protocol describing streaming generation."""

    def stream(self, messages: Sequence[Message]) -> AsyncIterator[bytes]:
        """Yield the raw response body of a streaming chat completion."""


class OllamaChatModel:
    """Streams ``/api/chat`` responses from an Ollama server."""

    def __init__(self, client: httpx.AsyncClient, config: GenerationConfig | None = None) -> None:
        self._client = client
        self._config = config or GenerationConfig()

    async def stream(self, messages: Sequence[Message]) -> AsyncIterator[bytes]:
        payload: dict[str, object] = {
            "model": self._config.model,
            "messages": [dict(message) for message in messages],
            "stream": True,
        }
        if self._config.temperature is not None:
            payload["options"] = {"temperature": self._config.temperature}
        try:
            async with self._client.stream("POST", "/api/chat", json=payload) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise StreamTerminatedError(
                        f"model returned HTTP {response.status_code}: {response.text[:200]}"
                    )
                async for data in response.aiter_bytes():
                    yield data
        except httpx.TransportError as exc:
            raise StreamTerminatedError(f"model stream interrupted: {exc}") from exc


class TemplateChatModel:
    """Deterministic model used for tests and offline environments.

    Replies with the first retrieved passage, framed like an Ollama stream.
    """

    def __init__(self, piece_size: int = 16, passage_chars: int = 200) -> None:
        self._piece_size = piece_size
        self._passage_chars = passage_chars

    def compose(self, messages: Sequence[Message]) -> str:
        user = next((m["content"] for m in reversed(messages) if m.get("role") == "user"), "")
        marker = user.find("[1] ")
        if marker == -1:
            return "I do not have enough relevant context to answer that question."
        passage = " ".join(user[marker + 4 :].split())[: self._passage_chars]
        return f"Based on the provided documents: {passage}"

    async def stream(self, messages: Sequence[Message]) -> AsyncIterator[bytes]:
        text = self.compose(messages)
        for index in range(0, len(text), self._piece_size):
            frame = {"message": {"role": "assistant", "content": text[index : index + self._piece_size]}, "done": False}
            yield (json.dumps(frame) + "\n").encode("utf-8")
        yield (json.dumps({"message": {"role": "assistant", "content": ""}, "done": True}) + "\n").encode("utf-8")
