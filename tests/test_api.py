from __future__ import annotations

import pytest

from coursemind.errors import ExtractionError
from coursemind.main import create_app
from conftest import FakeExtractor, FakeStructurer, course_text


@pytest.fixture
def extractor():
    return FakeExtractor(course_text())


@pytest.fixture
def client(database, vector_store, extractor):
    app = create_app(
        database=database,
        vector_store=vector_store,
        extractor=extractor,
        structurer=FakeStructurer(),
    )
    return app.test_client()


async def _material(client, course_id="course-1"):
    response = await client.post(f"/api/courses/{course_id}/chapters", json={"title": "Energy"})
    chapter = await response.get_json()
    response = await client.post(
        f"/api/chapters/{chapter['id']}/materials",
        json={"file_path": "/uploads/energy.txt", "media_type": "text/plain"},
    )
    return chapter, await response.get_json()


async def test_create_chapter_and_material(client):
    response = await client.post("/api/courses/course-1/chapters", json={"title": "Energy"})
    assert response.status_code == 201
    chapter = await response.get_json()
    assert chapter["status"] == "draft"

    response = await client.post(
        f"/api/chapters/{chapter['id']}/materials",
        json={"file_path": "/uploads/energy.txt", "media_type": "text/plain"},
    )
    assert response.status_code == 201
    material = await response.get_json()
    assert material["status"] == "pending"
    assert material["original_filename"] == "energy.txt"

    response = await client.get(f"/api/chapters/{chapter['id']}/materials")
    assert [m["id"] for m in (await response.get_json())["materials"]] == [material["id"]]


async def test_invalid_body_is_400(client):
    response = await client.post("/api/courses/course-1/chapters", json={"title": ""})
    assert response.status_code == 400
    assert "details" in await response.get_json()


async def test_unknown_chapter_is_404(client):
    response = await client.post(
        "/api/chapters/missing/materials",
        json={"file_path": "/a.txt", "media_type": "text/plain"},
    )
    assert response.status_code == 404
    assert (await response.get_json())["error"] == "Chapter not found: missing"


async def test_process_then_retrieve(client):
    _, material = await _material(client)

    response = await client.post(f"/api/materials/{material['id']}/process")
    assert response.status_code == 200
    result = await response.get_json()
    assert result["success"] is True
    assert result["embeddings_generated"] == result["chunks_created"] >= 2

    response = await client.post(
        "/api/courses/course-1/retrieve", json={"query": "photosynthesis chlorophyll", "k": 2}
    )
    assert response.status_code == 200
    results = (await response.get_json())["results"]
    assert len(results) == 2
    assert results[0]["material_id"] == material["id"]
    assert "source" in results[0]


async def test_process_twice_is_409(client):
    _, material = await _material(client)
    await client.post(f"/api/materials/{material['id']}/process")

    response = await client.post(f"/api/materials/{material['id']}/process")

    assert response.status_code == 409
    body = await response.get_json()
    assert body["status"] == "completed"


async def test_failed_processing_is_422_with_stage_log(client, extractor):
    extractor.error = ExtractionError("Unsupported file type: image/png")
    _, material = await _material(client)

    response = await client.post(f"/api/materials/{material['id']}/process")

    assert response.status_code == 422
    body = await response.get_json()
    assert body["success"] is False
    assert body["error"] == "Unsupported file type: image/png"
    assert body["stages"][-1]["stage"] == "ERROR"

    summary = await (await client.get(f"/api/materials/{material['id']}")).get_json()
    assert summary["status"] == "failed"
    assert summary["processing_error"] == "Unsupported file type: image/png"


async def test_reset_and_summary(client):
    _, material = await _material(client)
    await client.post(f"/api/materials/{material['id']}/process")

    summary = await (await client.get(f"/api/materials/{material['id']}")).get_json()
    assert summary["extracted_text_preview"].endswith("...")
    assert summary["has_structured_content"] is True

    response = await client.post(f"/api/materials/{material['id']}/reset")
    assert response.status_code == 200
    assert (await response.get_json())["status"] == "pending"


async def test_delete_material(client, vector_store):
    _, material = await _material(client)
    await client.post(f"/api/materials/{material['id']}/process")

    response = await client.delete(f"/api/materials/{material['id']}")
    assert response.status_code == 200
    assert (await response.get_json())["embeddings_deleted"] > 0
    assert vector_store.count() == 0

    response = await client.get(f"/api/materials/{material['id']}")
    assert response.status_code == 404


async def test_delete_course(client, vector_store):
    _, material = await _material(client)
    await client.post(f"/api/materials/{material['id']}/process")

    response = await client.delete("/api/courses/course-1")

    assert response.status_code == 200
    assert vector_store.count() == 0


async def test_retrieve_validation_and_empty_course(client):
    response = await client.post("/api/courses/course-1/retrieve", json={"query": "x", "k": 0})
    assert response.status_code == 400

    response = await client.post("/api/courses/empty/retrieve", json={"query": "anything"})
    assert (await response.get_json()) == {"results": []}


async def test_stats_and_liveness(client):
    stats = await (await client.get("/api/stats")).get_json()
    assert stats["total_embeddings"] == 0

    response = await client.get("/health/live")
    assert (await response.get_json()) == {"status": "alive"}


async def test_unknown_route_is_404(client):
    response = await client.get("/api/nothing-here")
    assert response.status_code == 404
