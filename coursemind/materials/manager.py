"""Material manager for CourseMind.

Handles chapter and material creation, processing summaries, and deletes
that cascade to the vector store.
"""
import os
from typing import List, Dict, Any, Optional
import structlog

from coursemind.db import Chapter, ChapterStatus, Database, Material
from coursemind.rag.store_sqlite import SQLiteVectorStore

logger = structlog.get_logger()

PREVIEW_CHARS = 1000


class MaterialManager:
    """Manages chapters, materials and the embeddings they own."""

    def __init__(self, database: Database, vector_store: SQLiteVectorStore):
        """Initialize the material manager.

        Args:
            database: Material database
            vector_store: Vector store holding material embeddings
        """
        self.database = database
        self.vector_store = vector_store

    def create_chapter(self, course_id: str, title: str) -> Chapter:
        """Create an empty chapter in a course.

        Args:
            course_id: Owning course
            title: Chapter title

        Returns:
            The created chapter (status draft)
        """
        return self.database.create_chapter(course_id, title)

    def get_chapter(self, chapter_id: str) -> Chapter:
        return self.database.get_chapter(chapter_id)

    def create_material(
        self,
        chapter_id: str,
        file_path: str,
        media_type: str,
        original_filename: Optional[str] = None,
    ) -> Material:
        """Register an uploaded file as a pending material.

        Processing is not started; call MaterialProcessor.process().

        Args:
            chapter_id: Owning chapter
            file_path: Where the upload is stored
            media_type: MIME type of the upload
            original_filename: Name shown to the user (defaults to the file name)

        Returns:
            The created material

        Raises:
            ChapterNotFoundError: If the chapter doesn't exist
        """
        material = self.database.create_material(
            chapter_id=chapter_id,
            file_path=file_path,
            media_type=media_type,
            original_filename=original_filename or os.path.basename(file_path),
        )
        self.database.refresh_chapter_status(chapter_id)
        logger.info(
            "material_registered",
            material_id=material.id,
            chapter_id=chapter_id,
            media_type=media_type,
        )
        return material

    def get_material(self, material_id: str) -> Material:
        return self.database.get_material(material_id)

    def list_materials(self, chapter_id: str) -> List[Material]:
        """List a chapter's materials in upload order.

        Raises:
            ChapterNotFoundError: If the chapter doesn't exist
        """
        self.database.get_chapter(chapter_id)
        return self.database.list_materials(chapter_id=chapter_id)

    def get_processing_result(self, material_id: str) -> Dict[str, Any]:
        """Summarize a material's processing outcome for display.

        Args:
            material_id: Material to summarize

        Returns:
            Dictionary with status, error and a preview of the extracted text
        """
        material = self.database.get_material(material_id)
        text = material.extracted_text

        preview = None
        if text:
            preview = text[:PREVIEW_CHARS] + ("..." if len(text) > PREVIEW_CHARS else "")

        return {
            "id": material.id,
            "original_filename": material.original_filename,
            "status": material.status.value,
            "processing_error": material.processing_error,
            "extracted_text_preview": preview,
            "extracted_text_length": len(text) if text else 0,
            "has_structured_content": material.structured_content is not None,
            "embedding_count": self.vector_store.count(material_id=material.id),
            "processed_at": material.processed_at,
        }

    def delete_material(self, material_id: str) -> int:
        """Delete a material and its embeddings.

        Returns:
            Number of embeddings removed

        Raises:
            MaterialNotFoundError: If the material doesn't exist
        """
        material = self.database.get_material(material_id)
        removed = self.vector_store.delete_by_material(material_id)
        self.database.delete_material(material_id)
        self.database.refresh_chapter_status(material.chapter_id)

        logger.info("material_deleted", material_id=material_id, embeddings_removed=removed)
        return removed

    def delete_chapter(self, chapter_id: str) -> int:
        """Delete a chapter, its materials and their embeddings.

        Returns:
            Number of embeddings removed

        Raises:
            ChapterNotFoundError: If the chapter doesn't exist
        """
        self.database.get_chapter(chapter_id)
        removed = self.vector_store.delete_by_chapter(chapter_id)
        self.database.delete_chapter(chapter_id)

        logger.info("chapter_deleted", chapter_id=chapter_id, embeddings_removed=removed)
        return removed

    def delete_course(self, course_id: str) -> int:
        """Delete everything stored for a course.

        Returns:
            Number of embeddings removed
        """
        removed = self.vector_store.delete_by_course(course_id)
        chapters = self.database.delete_course(course_id)

        logger.info(
            "course_deleted",
            course_id=course_id,
            chapters_removed=chapters,
            embeddings_removed=removed,
        )
        return removed

    def update_chapter_status(self, chapter_id: str) -> ChapterStatus:
        """Re-derive a chapter's status from its materials."""
        return self.database.refresh_chapter_status(chapter_id)
