"""Retrieval-augmented chat turns with streamed replies."""

from __future__ import annotations

import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Literal, Sequence

import httpx

from ctxrag.errors import CtxRagError, StreamDecodeWarning, StreamTerminatedError
from ctxrag.metrics.observability import PipelineMetrics, get_logger
from ctxrag.models import ChatTurn, SearchHit
from ctxrag.retrieval.service import Retriever
from ctxrag.services.generation import ChatModel
from ctxrag.services.stream import decode_stream

SYSTEM_PROMPT = (
    "You are an assistant answering questions about the supplied documents. "
    "Answer as precisely as the provided text allows."
)

QUESTION_TEMPLATE = """Question:
{question}

Provided information (may contain irrelevant parts):
{context}

Instructions:
1. Decide which parts of the provided information are relevant and ignore the rest.
2. Answer in detail and in a structured way; use paragraphs or lists where helpful.
3. Do not use knowledge beyond the provided information.
4. If the answer is not in the provided information, say so.

Answer:"""

ERROR_MARKER = "\n\n[error: the answer was interrupted]"


@dataclass(frozen=True)
class PromptBuilderConfig:
    """Configuration for prompt construction."""

    citation_prefix: str = "["
    citation_suffix: str = "]"
    system_prompt: str = SYSTEM_PROMPT
    question_template: str = QUESTION_TEMPLATE


class PromptBuilder:
    """Builds the chat messages sent to the model."""

    def __init__(self, config: PromptBuilderConfig | None = None) -> None:
        self._config = config or PromptBuilderConfig()

    def build_context(self, hits: Sequence[SearchHit]) -> str:
        if not hits:
            return "(nothing relevant was found)"
        lines = []
        for index, hit in enumerate(hits, start=1):
            prefix = f"{self._config.citation_prefix}{index}{self._config.citation_suffix}"
            payload = hit.payload
            lines.append(
                f"{prefix} {payload.embedding_text}\n"
                f"Source: {payload.document_id} (part {payload.ordinal + 1})"
            )
        return "\n\n".join(lines)

    def build_messages(self, question: str, hits: Sequence[SearchHit]) -> list[dict[str, str]]:
        user = self._config.question_template.format(question=question, context=self.build_context(hits))
        return [
            {"role": "system", "content": self._config.system_prompt},
            {"role": "user", "content": user},
        ]


@dataclass(frozen=True)
class ChatEvent:
    """One item forwarded to the caller during a turn."""

    type: Literal["delta", "error"]
    content: str


class ChatService:
    """Orchestrates retrieval and streamed generation for one turn at a time."""

    def __init__(
        self,
        retriever: Retriever,
        model: ChatModel,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        self._retriever = retriever
        self._model = model
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._logger = get_logger("chat")

    async def prepare(self, message: str, *, top_k: int | None = None) -> ChatTurn:
        """Embed, search and assemble the prompt; raises before any output exists."""

        try:
            hits = await self._retriever.retrieve(message, top_k=top_k)
        except CtxRagError as exc:
            PipelineMetrics.chat_turn_errors.labels(phase="retrieval").inc()
            self._logger.error("chat.retrieval_failed", error=type(exc).__name__, detail=str(exc))
            raise
        prompt = self._prompt_builder.build_messages(message, hits)
        return ChatTurn(message=message, hits=hits, prompt=prompt)

    async def stream_reply(self, turn: ChatTurn) -> AsyncIterator[ChatEvent]:
        """Forward deltas as they arrive; a broken stream ends with one error event."""

        def on_warning(warning: StreamDecodeWarning) -> None:
            turn.warnings += 1
            self._logger.warning("chat.decode_warning", reason=warning.reason)

        start = time.perf_counter()
        try:
            async with aclosing(decode_stream(self._model.stream(turn.prompt), on_warning)) as deltas:
                async for delta in deltas:
                    turn.reply += delta
                    yield ChatEvent("delta", delta)
        except (StreamTerminatedError, httpx.TransportError) as exc:
            self._logger.error("chat.stream_failed", detail=str(exc), delivered_chars=len(turn.reply))
            PipelineMetrics.chat_turn_errors.labels(phase="stream").inc()
            turn.error = str(exc)
            turn.reply += ERROR_MARKER
            yield ChatEvent("error", ERROR_MARKER)
        finally:
            duration = time.perf_counter() - start
            PipelineMetrics.observe_generation(duration)
            self._logger.info(
                "generation.complete",
                duration_seconds=duration,
                reply_chars=len(turn.reply),
                warnings=turn.warnings,
                completed=turn.completed,
            )

    async def stream(self, message: str, *, top_k: int | None = None) -> AsyncIterator[ChatEvent]:
        turn = await self.prepare(message, top_k=top_k)
        async with aclosing(self.stream_reply(turn)) as events:
            async for event in events:
                yield event

    async def answer(self, message: str, *, top_k: int | None = None) -> ChatTurn:
        """Run a whole turn and return the assembled reply."""

        turn = await self.prepare(message, top_k=top_k)
        async with aclosing(self.stream_reply(turn)) as events:
            async for _ in events:
                pass
        return turn
