from __future__ import annotations

from typing import Sequence
from uuid import uuid4

import chromadb
import pytest

from ctxrag.embeddings.store import ChromaVectorStore
from ctxrag.models import Document

KEYWORDS = ("apple", "banana", "cherr")

FRUIT_TEXT = (
    "Apples grow in orchards and taste sweet.\n\n"
    "Bananas ripen in warm tropical climates.\n\n"
    "Cherries bloom early in the spring season."
)


class KeywordEmbedder:
    """Counts fruit keywords so tests can predict which chunk a query lands on."""

    dimension = len(KEYWORDS) + 1

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def embed(self, text: str) -> tuple[float, ...]:
        self.calls.append(text)
        lowered = text.lower()
        return tuple(float(lowered.count(word)) for word in KEYWORDS) + (0.1,)


class ScriptedChatModel:
    """Replays fixed response bytes and records the prompt it was given."""

    def __init__(self, frames: Sequence[bytes]) -> None:
        self.frames = list(frames)
        self.messages: list[dict[str, str]] = []
        self.closed = False

    async def stream(self, messages):
        self.messages = [dict(message) for message in messages]
        try:
            for frame in self.frames:
                yield frame
        finally:
            self.closed = True


@pytest.fixture
def chroma_store() -> ChromaVectorStore:
    return ChromaVectorStore(chromadb.EphemeralClient(), collection_name=f"test-{uuid4().hex}")


@pytest.fixture
def fruit_document() -> Document:
    return Document(document_id="fruit-notes", text=FRUIT_TEXT, source_path="/tmp/fruit.txt")


@pytest.fixture
def keyword_embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def scripted_model() -> type[ScriptedChatModel]:
    return ScriptedChatModel
