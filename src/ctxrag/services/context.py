"""Context agents situating a chunk inside its document."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from ctxrag.errors import ContextGenerationError
from ctxrag.models import Chunk

CONTEXT_SYSTEM_PROMPT = (
    "You are a text-processing assistant. You receive a document (or the part of it around a chunk) "
    "and one chunk taken from it. Write a short context of one to three sentences that situates the "
    "chunk within the document so it can be understood on its own: name the section or topic it "
    "belongs to and any subjects, events or terms the chunk refers to without naming them. Keep the "
    "document's terminology and language. Do not repeat the chunk and do not add information that is "
    "not in the document. Answer with the context only."
)

CONTEXT_USER_TEMPLATE = "<document>\n{document}\n</document>\n\n<chunk>\n{chunk}\n</chunk>"


class ContextAgent(Protocol):
    """Anything able to describe where a chunk sits in its document."""

    async def contextualize(self, document_text: str, chunk: Chunk) -> str:
        """Return a short context for ``chunk``; never mutates it."""


@dataclass(frozen=True)
class ContextAgentConfig:
    model: str = "gemma3:12b"
    temperature: float | None = None
    system_prompt: str = CONTEXT_SYSTEM_PROMPT


class OllamaContextAgent:
    """Context agent issuing one non-streaming Ollama chat call per chunk."""

    def __init__(self, client: httpx.AsyncClient, config: ContextAgentConfig | None = None) -> None:
        self._client = client
        self._config = config or ContextAgentConfig()

    def build_messages(self, document_text: str, chunk: Chunk) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self._config.system_prompt},
            {"role": "user", "content": CONTEXT_USER_TEMPLATE.format(document=document_text, chunk=chunk.text)},
        ]

    async def contextualize(self, document_text: str, chunk: Chunk) -> str:
        payload: dict[str, object] = {
            "model": self._config.model,
            "messages": self.build_messages(document_text, chunk),
            "stream": False,
        }
        if self._config.temperature is not None:
            payload["options"] = {"temperature": self._config.temperature}
        try:
            response = await self._client.post("/api/chat", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TransportError as exc:
            raise ContextGenerationError(chunk.ordinal, f"request failed: {exc}", transient=True) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ContextGenerationError(
                chunk.ordinal, f"model returned HTTP {status}", transient=status >= 500
            ) from exc
        except ValueError as exc:
            raise ContextGenerationError(chunk.ordinal, f"response is not JSON: {exc}") from exc

        content = body.get("message", {}).get("content") if isinstance(body, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ContextGenerationError(chunk.ordinal, "model returned an empty context")
        return content.strip()


class TemplateContextAgent:
    """Deterministic agent used for tests and offline environments."""

    def __init__(self, preview_chars: int = 60) -> None:
        self._preview_chars = preview_chars

    async def contextualize(self, document_text: str, chunk: Chunk) -> str:
        preview = " ".join(chunk.text.split())[: self._preview_chars]
        return f"Part {chunk.ordinal + 1} of {chunk.document_id}, opening with: {preview}"
