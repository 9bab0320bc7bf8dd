"""Shared fixtures: in-memory stores and stand-in collaborators."""
from __future__ import annotations

from typing import Optional

import pytest

from coursemind.db import Database
from coursemind.rag.chunker import TextChunker
from coursemind.rag.ingest import MaterialProcessor
from coursemind.rag.store_sqlite import SQLiteVectorStore


def course_text(length: int = 3000) -> str:
    """Two paragraphs of sentence-terminated prose, exactly ``length`` chars."""
    first = (
        "Photosynthesis converts light energy into chemical energy in plants. "
        "Chlorophyll absorbs red and blue light inside the chloroplasts. "
    )
    second = (
        "Cellular respiration releases the energy stored in glucose molecules. "
        "Mitochondria produce most of the ATP that a cell consumes. "
    )
    half = length // 2
    paragraph_one = (first * (half // len(first) + 1))[: half - 2].rstrip() + "."
    paragraph_two = (second * (length // len(second) + 1)).rstrip()
    text = paragraph_one + "\n\n" + paragraph_two
    return text[: length - 1] + "."


class FakeExtractor:
    """Returns fixed text per file path, or raises a configured error."""

    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls = []

    def extract(self, file_path: str, media_type: str) -> str:
        self.calls.append((file_path, media_type))
        if self.error is not None:
            raise self.error
        return self.text


class FakeStructurer:
    """Async structuring service that prepends a heading, or fails."""

    def __init__(self, reply: Optional[str] = None, error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls = 0

    async def structure_content(self, raw_text: str) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.reply if self.reply is not None else "# Notes\n\n" + raw_text


@pytest.fixture
def database():
    db = Database(":memory:")
    yield db
    db.close()


@pytest.fixture
def vector_store():
    store = SQLiteVectorStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def chapter(database):
    return database.create_chapter("course-1", "Chapter 1: Energy")


@pytest.fixture
def material(database, chapter):
    return database.create_material(
        chapter_id=chapter.id,
        file_path="/uploads/energy.txt",
        media_type="text/plain",
        original_filename="energy.txt",
    )


@pytest.fixture
def make_processor(database, vector_store):
    """Build a processor around the in-memory stores."""

    def _make(extractor=None, structurer=None, **kwargs) -> MaterialProcessor:
        kwargs.setdefault("skip_embeddings", False)
        kwargs.setdefault("max_chunks", 20)
        kwargs.setdefault("chunker", TextChunker(chunk_size=2000, chunk_overlap=200))
        return MaterialProcessor(
            database,
            vector_store,
            extractor=extractor or FakeExtractor(course_text()),
            structurer=structurer,
            **kwargs,
        )

    return _make
