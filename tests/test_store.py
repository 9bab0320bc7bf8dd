from __future__ import annotations

import numpy as np
import pytest
from structlog.testing import capture_logs

from coursemind.rag.embedder import embed
from coursemind.rag.store_sqlite import EmbeddingRecord, cosine_similarity


def _record(text, material_id="m1", chunk_index=0, course_id="c1", chapter_id="ch1", **metadata):
    return EmbeddingRecord(
        course_id=course_id,
        chapter_id=chapter_id,
        material_id=material_id,
        chunk_index=chunk_index,
        content=text,
        vector=embed(text),
        metadata=metadata,
    )


TEXTS = [
    "Photosynthesis converts light into chemical energy.",
    "Mitochondria release energy from glucose.",
    "The French revolution began in 1789.",
    "Newton's laws describe motion and force.",
]


@pytest.fixture
def populated(vector_store):
    vector_store.add_embeddings([_record(t, chunk_index=i) for i, t in enumerate(TEXTS)])
    vector_store.add_embeddings([
        _record("Light energy drives photosynthesis.", material_id="m2", chapter_id="ch2"),
        _record("Photosynthesis in another course.", material_id="m3", course_id="c2", chapter_id="ch3"),
    ])
    return vector_store


class TestCosineSimilarity:
    def test_symmetric_and_bounded(self):
        rng = np.random.default_rng(7)
        for _ in range(20):
            a, b = rng.normal(size=16), rng.normal(size=16)
            assert cosine_similarity(a, b) == cosine_similarity(b, a)
            assert -1.0 <= cosine_similarity(a, b) <= 1.0

    def test_self_similarity_is_one(self):
        v = embed("cell biology")
        assert cosine_similarity(v, v) == pytest.approx(1.0, abs=1e-6)

    def test_opposite_vectors(self):
        v = np.array([1.0, 2.0, 3.0])
        assert cosine_similarity(v, -v) == pytest.approx(-1.0)

    def test_zero_vector_gives_zero(self):
        assert cosine_similarity(embed("energy"), np.zeros(384)) == 0.0
        assert cosine_similarity(np.zeros(3), np.zeros(3)) == 0.0

    def test_dimension_mismatch_gives_zero(self):
        assert cosine_similarity(np.ones(3), np.ones(4)) == 0.0


def test_results_sorted_by_descending_similarity(populated):
    results = populated.query_similar("c1", embed("photosynthesis light energy"), limit=10)

    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)
    assert results[0].content in (TEXTS[0], "Light energy drives photosynthesis.")


@pytest.mark.parametrize("limit", [1, 2, 3, 50])
def test_limit_bounds_result_count(populated, limit):
    results = populated.query_similar("c1", embed("energy"), limit=limit)
    assert len(results) == min(limit, 5)


def test_non_positive_limit_returns_nothing(populated):
    assert populated.query_similar("c1", embed("energy"), limit=0) == []


def test_course_filter_isolation(populated):
    results = populated.query_similar("c2", embed("photosynthesis"), limit=10)

    assert [r.material_id for r in results] == ["m3"]
    assert all(r.course_id == "c2" for r in results)
    assert populated.query_similar("unknown", embed("photosynthesis")) == []


def test_chapter_and_material_filters(populated):
    by_chapter = populated.query_similar("c1", embed("energy"), limit=10, chapter_id="ch2")
    by_material = populated.query_similar("c1", embed("energy"), limit=10, material_id="m1")

    assert {r.material_id for r in by_chapter} == {"m2"}
    assert len(by_material) == len(TEXTS)


def test_ties_are_ordered_by_chunk_index_then_material(vector_store):
    vector_store.add_embeddings([
        _record("same words", material_id="mb", chunk_index=1),
        _record("same words", material_id="mb", chunk_index=0),
        _record("same words", material_id="ma", chunk_index=1),
    ])

    results = vector_store.query_similar("c1", embed("same words"), limit=10)

    assert [(r.chunk_index, r.material_id) for r in results] == [(0, "mb"), (1, "ma"), (1, "mb")]


def test_dimension_mismatch_is_logged(vector_store):
    vector_store.add_embeddings([_record("glucose and pyruvate")])

    with capture_logs() as logs:
        results = vector_store.query_similar("c1", embed("glucose", dim=16), limit=5)

    assert [r.similarity for r in results] == [0.0]
    warnings = [e for e in logs if e["event"] == "embedding_dimension_mismatch"]
    assert len(warnings) == 1
    assert warnings[0]["log_level"] == "warning"
    assert warnings[0]["query_dim"] == 16
    assert warnings[0]["mismatched_rows"] == 1


def test_delete_by_material_removes_only_its_rows(populated):
    before = populated.query_similar("c1", embed("energy"), limit=10)

    removed = populated.delete_by_material("m2")
    after = populated.query_similar("c1", embed("energy"), limit=10)

    assert removed == 1
    assert "m2" not in {r.material_id for r in after}
    kept = [(r.material_id, r.chunk_index, r.similarity) for r in before if r.material_id != "m2"]
    assert [(r.material_id, r.chunk_index, r.similarity) for r in after] == kept


def test_delete_by_chapter_and_course(populated):
    assert populated.delete_by_chapter("ch1") == len(TEXTS)
    assert populated.delete_by_course("c1") == 1
    assert not populated.has_course_embeddings("c1")
    assert populated.has_course_embeddings("c2")


def test_upsert_replaces_same_chunk(vector_store):
    vector_store.add_embeddings([_record("old text", chunk_index=0)])
    vector_store.add_embeddings([_record("new text", chunk_index=0)])

    results = vector_store.query_similar("c1", embed("new text"), limit=10)

    assert vector_store.count(material_id="m1") == 1
    assert results[0].content == "new text"


def test_replace_material_embeddings_drops_stale_chunks(vector_store):
    vector_store.add_embeddings([_record(t, chunk_index=i) for i, t in enumerate(TEXTS)])

    written = vector_store.replace_material_embeddings("m1", [_record("only chunk now")])

    assert written == 1
    assert vector_store.count(material_id="m1") == 1


def test_replace_material_embeddings_rejects_foreign_records(vector_store):
    with pytest.raises(ValueError):
        vector_store.replace_material_embeddings("m1", [_record("x", material_id="m2")])


def test_metadata_round_trips(vector_store):
    vector_store.add_embeddings([_record("chunk text", start_char=0, end_char=10, total_chunks=1)])

    result = vector_store.query_similar("c1", embed("chunk text"))[0]

    assert result.metadata == {"start_char": 0, "end_char": 10, "total_chunks": 1}
    assert result.similarity == pytest.approx(1.0, abs=1e-6)


def test_add_nothing(vector_store):
    assert vector_store.add_embeddings([]) == 0


def test_stats(populated):
    stats = populated.get_stats()

    assert stats["total_embeddings"] == 6
    assert stats["courses"] == 2
    assert stats["materials"] == 3
    assert stats["db_path"] == ":memory:"
    assert populated.count(course_id="c1") == 5
