from __future__ import annotations

import pytest

from coursemind.rag.embedder import embed
from coursemind.rag.retriever import Retriever
from coursemind.rag.store_sqlite import EmbeddingRecord

CHUNKS = [
    "Photosynthesis happens in the chloroplasts of plant cells.",
    "The Calvin cycle fixes carbon dioxide into sugars.",
    "Glycolysis splits glucose into two pyruvate molecules.",
]


@pytest.fixture
def retriever(vector_store):
    vector_store.add_embeddings([
        EmbeddingRecord(
            course_id="bio",
            chapter_id="ch1",
            material_id="m1",
            chunk_index=i,
            content=text,
            vector=embed(text),
            metadata={"total_chunks": len(CHUNKS)},
        )
        for i, text in enumerate(CHUNKS)
    ])
    return Retriever(vector_store, top_k=2)


def test_blank_query_returns_nothing(retriever):
    assert retriever.retrieve("bio", "") == []
    assert retriever.retrieve("bio", "   ") == []


def test_course_without_embeddings_returns_nothing(retriever):
    assert retriever.retrieve("history", "photosynthesis") == []


def test_best_match_first_and_default_k(retriever):
    results = retriever.retrieve("bio", "where does photosynthesis happen in plant cells")

    assert len(results) == 2
    assert results[0].content == CHUNKS[0]
    assert results[0].similarity >= results[1].similarity


def test_k_overrides_default(retriever):
    assert len(retriever.retrieve("bio", "glucose", k=3)) == 3
    assert len(retriever.retrieve("bio", "glucose", k=1)) == 1


@pytest.mark.parametrize("k", [0, -1])
def test_non_positive_k_returns_nothing(retriever, k):
    assert retriever.retrieve("bio", "glucose", k=k) == []


def test_material_filter(retriever):
    assert retriever.retrieve("bio", "glucose", material_id="other") == []


def test_result_source_and_dict(retriever):
    result = retriever.retrieve("bio", "glycolysis glucose pyruvate", k=1)[0]

    assert result.source == "chapter ch1 > material m1 > chunk 3/3"
    payload = result.to_dict()
    assert payload["chunk_index"] == 2
    assert payload["source"] == result.source


def test_retrieve_context_formats_sources(retriever):
    context = retriever.retrieve_context("bio", "calvin cycle carbon dioxide", k=1)

    assert context.startswith("[Source 1: chapter ch1 > material m1 > chunk 2/3]")
    assert CHUNKS[1] in context


def test_retrieve_context_respects_max_chars(retriever):
    context = retriever.retrieve_context("bio", "glucose", k=3, max_chars=300)
    assert len(context) <= 310


def test_retrieve_context_empty_without_results(retriever):
    assert retriever.retrieve_context("history", "anything") == ""
