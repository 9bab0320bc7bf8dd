"""Main Quart application for CourseMind."""
import logging
from typing import Optional

from pydantic import BaseModel, Field, ValidationError
from quart import Quart, request, jsonify
import structlog

from coursemind import config
from coursemind.db import Database
from coursemind.errors import (
    ChapterNotFoundError,
    InvalidStateError,
    MaterialNotFoundError,
)
from coursemind.llm_client import OllamaClient
from coursemind.materials import MaterialManager
from coursemind.rag.ingest import Extractor, MaterialProcessor, Structurer
from coursemind.rag.retriever import Retriever
from coursemind.rag.store_sqlite import SQLiteVectorStore

# Configure structured logging
logging.basicConfig(format="%(message)s", level=config.LOG_LEVEL)

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


class CreateChapterRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class CreateMaterialRequest(BaseModel):
    file_path: str = Field(..., min_length=1)
    media_type: str = Field(..., min_length=1)
    original_filename: Optional[str] = None


class RetrieveRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)
    k: Optional[int] = Field(default=None, ge=1, le=50)
    chapter_id: Optional[str] = None
    material_id: Optional[str] = None


def create_app(
    database: Optional[Database] = None,
    vector_store: Optional[SQLiteVectorStore] = None,
    extractor: Optional[Extractor] = None,
    structurer: Optional[Structurer] = None,
) -> Quart:
    """Build the application around explicitly constructed stores.

    Args:
        database: Material database (default: file from config)
        vector_store: Vector store (default: file from config)
        extractor: Text extractor (default: DocumentExtractor)
        structurer: Structuring service (default: the Ollama client)

    Returns:
        Configured Quart app
    """
    app = Quart(__name__)

    database = database or Database()
    vector_store = vector_store or SQLiteVectorStore()
    ollama_client = OllamaClient()

    processor = MaterialProcessor(
        database,
        vector_store,
        extractor=extractor,
        structurer=structurer if structurer is not None else ollama_client,
    )
    manager = MaterialManager(database, vector_store)
    retriever = Retriever(vector_store)

    app.extensions["coursemind"] = {
        "database": database,
        "vector_store": vector_store,
        "processor": processor,
        "manager": manager,
        "retriever": retriever,
    }

    @app.route("/api/courses/<course_id>/chapters", methods=["POST"])
    async def create_chapter(course_id: str):
        """Create a chapter.

        Expects JSON body: {"title": "Chapter 1"}
        """
        body = CreateChapterRequest.model_validate(await request.get_json(silent=True) or {})
        chapter = manager.create_chapter(course_id, body.title)
        return jsonify(chapter.to_dict()), 201

    @app.route("/api/courses/<course_id>", methods=["DELETE"])
    async def delete_course(course_id: str):
        """Delete a course's chapters, materials and embeddings."""
        removed = manager.delete_course(course_id)
        return jsonify({"course_id": course_id, "embeddings_deleted": removed})

    @app.route("/api/chapters/<chapter_id>", methods=["DELETE"])
    async def delete_chapter(chapter_id: str):
        """Delete a chapter with its materials and embeddings."""
        removed = manager.delete_chapter(chapter_id)
        return jsonify({"chapter_id": chapter_id, "embeddings_deleted": removed})

    @app.route("/api/chapters/<chapter_id>/materials", methods=["POST"])
    async def create_material(chapter_id: str):
        """Register an uploaded file as a pending material.

        Expects JSON body:
        {
            "file_path": "/uploads/abc.pdf",
            "media_type": "application/pdf",
            "original_filename": "lecture-1.pdf"  // optional
        }
        """
        body = CreateMaterialRequest.model_validate(await request.get_json(silent=True) or {})
        material = manager.create_material(
            chapter_id,
            file_path=body.file_path,
            media_type=body.media_type,
            original_filename=body.original_filename,
        )
        return jsonify(material.to_dict()), 201

    @app.route("/api/chapters/<chapter_id>/materials", methods=["GET"])
    async def list_materials(chapter_id: str):
        """List a chapter's materials."""
        materials = manager.list_materials(chapter_id)
        return jsonify({"materials": [m.to_dict() for m in materials]})

    @app.route("/api/materials/<material_id>", methods=["GET"])
    async def get_material(material_id: str):
        """Get a material's processing summary."""
        return jsonify(manager.get_processing_result(material_id))

    @app.route("/api/materials/<material_id>", methods=["DELETE"])
    async def delete_material(material_id: str):
        """Delete a material and its embeddings."""
        removed = manager.delete_material(material_id)
        return jsonify({"material_id": material_id, "embeddings_deleted": removed})

    @app.route("/api/materials/<material_id>/process", methods=["POST"])
    async def process_material(material_id: str):
        """Process a material; the request returns when processing is done.

        Returns:
            200 with the processing result, or 422 with the stage log if a
            fatal stage failed
        """
        result = await processor.process(material_id)
        return jsonify(result.to_dict()), 200 if result.success else 422

    @app.route("/api/materials/<material_id>/reset", methods=["POST"])
    async def reset_material(material_id: str):
        """Return a material to pending so it can be processed again."""
        material = processor.reset(material_id)
        return jsonify(material.to_dict())

    @app.route("/api/courses/<course_id>/retrieve", methods=["POST"])
    async def retrieve(course_id: str):
        """Retrieve context chunks for a question.

        Expects JSON body:
        {
            "query": "What is a closure?",
            "k": 5,                 // optional
            "chapter_id": "...",    // optional
            "material_id": "..."    // optional
        }
        """
        body = RetrieveRequest.model_validate(await request.get_json(silent=True) or {})
        results = retriever.retrieve(
            course_id,
            body.query,
            k=body.k,
            chapter_id=body.chapter_id,
            material_id=body.material_id,
        )
        return jsonify({"results": [r.to_dict() for r in results]})

    @app.route("/api/stats")
    async def stats():
        """Vector store statistics."""
        return jsonify(vector_store.get_stats())

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - check if the structuring model is reachable.

        Processing still works without it; structuring is then skipped.
        """
        checks = {"status": "healthy", "ollama": False, "models": False}

        try:
            models = await ollama_client.list_models()
            checks["ollama"] = True

            if config.STRUCTURE_MODEL in models:
                checks["models"] = True
            else:
                checks["status"] = "degraded"
                checks["error"] = f"Missing structuring model: {config.STRUCTURE_MODEL}"

        except Exception as e:
            logger.warning("health_check_failed", error=str(e))
            checks["status"] = "degraded"
            checks["error"] = str(e)

        return jsonify(checks), 200

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(ValidationError)
    async def validation_error(error: ValidationError):
        return jsonify({
            "error": "Invalid request body",
            "details": error.errors(include_url=False, include_context=False),
        }), 400

    @app.errorhandler(MaterialNotFoundError)
    @app.errorhandler(ChapterNotFoundError)
    async def lookup_error(error):
        return jsonify({"error": error.message}), 404

    @app.errorhandler(InvalidStateError)
    async def invalid_state(error: InvalidStateError):
        logger.info(
            "invalid_material_state",
            material_id=error.material_id,
            status=error.status,
            operation=error.operation,
        )
        return jsonify({
            "error": error.message,
            "detail": error.detail,
            "status": error.status,
        }), 409

    @app.errorhandler(404)
    async def not_found(error):
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        """Handle 500 errors."""
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    logger.info(
        "app_initialized",
        materials_db=database.db_path,
        vector_db=vector_store.db_path,
    )
    return app


if __name__ == "__main__":
    # For development - use hypercorn "coursemind.main:create_app()" in production
    create_app().run(host="0.0.0.0", port=5000, debug=True)
