"""Database initialization and helpers for CourseMind.

SQLite database for storing:
- Chapters (the parent of uploaded materials, scoped to a course)
- Materials and their processing state
- Derived text produced by the ingestion pipeline
"""
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional
import structlog

from coursemind import config
from coursemind.errors import (
    ChapterNotFoundError,
    InvalidStateError,
    MaterialNotFoundError,
)

logger = structlog.get_logger()


class MaterialStatus(str, Enum):
    """Processing state of an uploaded material."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ChapterStatus(str, Enum):
    """Aggregate state of a chapter, derived from its materials."""

    DRAFT = "draft"
    PROCESSING = "processing"
    READY = "ready"


# Allowed transitions. Entering PENDING is only done by reset.
TRANSITIONS: Dict[MaterialStatus, frozenset] = {
    MaterialStatus.PENDING: frozenset(
        {MaterialStatus.PROCESSING, MaterialStatus.PENDING}
    ),
    MaterialStatus.PROCESSING: frozenset(
        {MaterialStatus.COMPLETED, MaterialStatus.FAILED}
    ),
    MaterialStatus.COMPLETED: frozenset({MaterialStatus.PENDING}),
    MaterialStatus.FAILED: frozenset(
        {MaterialStatus.PROCESSING, MaterialStatus.PENDING}
    ),
}


def sources_for(target: MaterialStatus) -> List[MaterialStatus]:
    """All statuses from which ``target`` may be entered."""
    return [status for status in MaterialStatus if target in TRANSITIONS[status]]


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Chapter:
    id: str
    course_id: str
    title: str
    status: ChapterStatus
    processed_content: Optional[str]
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Chapter":
        return cls(
            id=row["id"],
            course_id=row["course_id"],
            title=row["title"],
            status=ChapterStatus(row["status"]),
            processed_content=row["processed_content"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "title": self.title,
            "status": self.status.value,
            "has_processed_content": self.processed_content is not None,
            "created_at": self.created_at,
        }


@dataclass
class Material:
    """One uploaded document and its derived fields."""

    id: str
    chapter_id: str
    course_id: str
    original_filename: str
    file_path: str
    media_type: str
    status: MaterialStatus
    processing_error: Optional[str]
    extracted_text: Optional[str]
    structured_content: Optional[str]
    processed_at: Optional[str]
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Material":
        return cls(
            id=row["id"],
            chapter_id=row["chapter_id"],
            course_id=row["course_id"],
            original_filename=row["original_filename"],
            file_path=row["file_path"],
            media_type=row["media_type"],
            status=MaterialStatus(row["status"]),
            processing_error=row["processing_error"],
            extracted_text=row["extracted_text"],
            structured_content=row["structured_content"],
            processed_at=row["processed_at"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chapter_id": self.chapter_id,
            "course_id": self.course_id,
            "original_filename": self.original_filename,
            "media_type": self.media_type,
            "status": self.status.value,
            "processing_error": self.processing_error,
            "extracted_text_length": len(self.extracted_text or ""),
            "has_structured_content": self.structured_content is not None,
            "processed_at": self.processed_at,
            "created_at": self.created_at,
        }


class Database:
    """Chapter and material persistence on a single SQLite connection."""

    def __init__(self, db_path: Optional[str] = None):
        """Open (or create) the database.

        Args:
            db_path: SQLite file path, or ":memory:" (default from config)
        """
        self.db_path = str(db_path or config.MATERIALS_DB_PATH)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self.init_schema()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run statements in a single transaction, rolling back on error."""
        with self._lock:
            cursor = self._conn.cursor()
            try:
                yield cursor
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
            finally:
                cursor.close()

    def init_schema(self) -> None:
        """Create tables if they don't exist.

        - chapters: parent of materials, scoped to a course
        - materials: uploaded documents with processing state
        """
        try:
            with self.transaction() as cursor:
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS chapters (
                        id TEXT PRIMARY KEY,
                        course_id TEXT NOT NULL,
                        title TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'draft',
                        processed_content TEXT,
                        created_at TEXT NOT NULL
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS materials (
                        id TEXT PRIMARY KEY,
                        chapter_id TEXT NOT NULL
                            REFERENCES chapters(id) ON DELETE CASCADE,
                        course_id TEXT NOT NULL,
                        original_filename TEXT NOT NULL,
                        file_path TEXT NOT NULL,
                        media_type TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending',
                        processing_error TEXT,
                        extracted_text TEXT,
                        structured_content TEXT,
                        processed_at TEXT,
                        created_at TEXT NOT NULL
                    )
                """)

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_chapters_course
                    ON chapters(course_id)
                """)

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_materials_chapter
                    ON materials(chapter_id)
                """)

            logger.info("database_initialized", db_path=self.db_path)

        except sqlite3.Error as e:
            logger.error("database_init_failed", error=str(e))
            raise

    # Chapters

    def create_chapter(self, course_id: str, title: str) -> Chapter:
        chapter_id = str(uuid.uuid4())
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO chapters (id, course_id, title, status, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (chapter_id, course_id, title, ChapterStatus.DRAFT.value, utcnow()),
            )
        logger.info("chapter_created", chapter_id=chapter_id, course_id=course_id)
        return self.get_chapter(chapter_id)

    def get_chapter(self, chapter_id: str) -> Chapter:
        """Fetch a chapter.

        Raises:
            ChapterNotFoundError: If the chapter doesn't exist
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM chapters WHERE id = ?", (chapter_id,)
            ).fetchone()
        if row is None:
            raise ChapterNotFoundError(chapter_id)
        return Chapter.from_row(row)

    def list_chapters(self, course_id: str) -> List[Chapter]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM chapters WHERE course_id = ? ORDER BY created_at, id",
                (course_id,),
            ).fetchall()
        return [Chapter.from_row(row) for row in rows]

    def update_chapter(
        self,
        chapter_id: str,
        status: ChapterStatus,
        processed_content: Optional[str] = None,
    ) -> None:
        with self.transaction() as cursor:
            cursor.execute(
                "UPDATE chapters SET status = ?, processed_content = ? WHERE id = ?",
                (status.value, processed_content, chapter_id),
            )

    def refresh_chapter_status(self, chapter_id: str) -> ChapterStatus:
        """Derive a chapter's status from its materials.

        - no materials: draft
        - every material completed: ready, with the merged extracted text
        - any material pending or processing: processing
        - otherwise (some failed, none in flight): unchanged

        Returns:
            The chapter's status after the update
        """
        chapter = self.get_chapter(chapter_id)
        materials = self.list_materials(chapter_id=chapter_id)
        statuses = {m.status for m in materials}

        if not materials:
            status, merged = ChapterStatus.DRAFT, None
        elif statuses == {MaterialStatus.COMPLETED}:
            status = ChapterStatus.READY
            merged = "\n\n---\n\n".join(
                m.extracted_text for m in materials if m.extracted_text
            )
        elif statuses & {MaterialStatus.PENDING, MaterialStatus.PROCESSING}:
            status, merged = ChapterStatus.PROCESSING, None
        else:
            return chapter.status

        self.update_chapter(chapter_id, status, merged)
        logger.debug(
            "chapter_status_refreshed",
            chapter_id=chapter_id,
            status=status.value,
            material_count=len(materials),
        )
        return status

    def delete_chapter(self, chapter_id: str) -> bool:
        """Delete a chapter; its materials go with it."""
        with self.transaction() as cursor:
            cursor.execute("DELETE FROM materials WHERE chapter_id = ?", (chapter_id,))
            cursor.execute("DELETE FROM chapters WHERE id = ?", (chapter_id,))
            return cursor.rowcount > 0

    def delete_course(self, course_id: str) -> int:
        """Delete every chapter and material of a course.

        Returns:
            Number of chapters deleted
        """
        with self.transaction() as cursor:
            cursor.execute("DELETE FROM materials WHERE course_id = ?", (course_id,))
            cursor.execute("DELETE FROM chapters WHERE course_id = ?", (course_id,))
            return cursor.rowcount

    # Materials

    def create_material(
        self,
        chapter_id: str,
        file_path: str,
        media_type: str,
        original_filename: str,
    ) -> Material:
        chapter = self.get_chapter(chapter_id)
        material_id = str(uuid.uuid4())
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO materials (
                    id, chapter_id, course_id, original_filename,
                    file_path, media_type, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    material_id,
                    chapter_id,
                    chapter.course_id,
                    original_filename,
                    file_path,
                    media_type,
                    MaterialStatus.PENDING.value,
                    utcnow(),
                ),
            )
        logger.info("material_created", material_id=material_id, chapter_id=chapter_id)
        return self.get_material(material_id)

    def find_material(self, material_id: str) -> Optional[Material]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM materials WHERE id = ?", (material_id,)
            ).fetchone()
        return Material.from_row(row) if row else None

    def get_material(self, material_id: str) -> Material:
        """Fetch a material.

        Raises:
            MaterialNotFoundError: If the material doesn't exist
        """
        material = self.find_material(material_id)
        if material is None:
            raise MaterialNotFoundError(material_id)
        return material

    def list_materials(
        self,
        chapter_id: Optional[str] = None,
        course_id: Optional[str] = None,
        statuses: Optional[Iterable[MaterialStatus]] = None,
    ) -> List[Material]:
        sql = "SELECT * FROM materials WHERE 1 = 1"
        params: List[Any] = []
        if chapter_id:
            sql += " AND chapter_id = ?"
            params.append(chapter_id)
        if course_id:
            sql += " AND course_id = ?"
            params.append(course_id)
        if statuses is not None:
            values = [MaterialStatus(s).value for s in statuses]
            sql += f" AND status IN ({','.join('?' * len(values))})"
            params.extend(values)
        sql += " ORDER BY created_at, id"

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [Material.from_row(row) for row in rows]

    def transition(
        self,
        material_id: str,
        target: MaterialStatus,
        operation: str,
        **fields: Any,
    ) -> Material:
        """Atomically move a material into ``target``.

        The update only applies when the current status is one from which
        ``target`` may be entered; a concurrent caller that lost the race
        gets InvalidStateError instead of a second transition.

        Args:
            material_id: Material to update
            target: New status
            operation: Name of the caller's operation, for error messages
            **fields: Extra columns to set in the same statement

        Returns:
            The updated material

        Raises:
            MaterialNotFoundError: If the material doesn't exist
            InvalidStateError: If the current status doesn't allow the move
        """
        allowed = [status.value for status in sources_for(target)]
        assignments = ["status = ?"] + [f"{column} = ?" for column in fields]
        params: List[Any] = [target.value, *fields.values(), material_id, *allowed]

        with self.transaction() as cursor:
            cursor.execute(
                f"""
                UPDATE materials SET {', '.join(assignments)}
                WHERE id = ? AND status IN ({','.join('?' * len(allowed))})
                """,
                params,
            )
            changed = cursor.rowcount

        if changed == 0:
            current = self.get_material(material_id)
            logger.warning(
                "material_transition_rejected",
                material_id=material_id,
                status=current.status.value,
                target=target.value,
            )
            raise InvalidStateError(material_id, current.status.value, operation)

        logger.debug(
            "material_transitioned", material_id=material_id, status=target.value
        )
        return self.get_material(material_id)

    def update_material(self, material_id: str, **fields: Any) -> None:
        """Set derived columns without touching the status."""
        if not fields:
            return
        if "status" in fields:
            raise ValueError("Use transition() to change a material's status")

        assignments = ", ".join(f"{column} = ?" for column in fields)
        with self.transaction() as cursor:
            cursor.execute(
                f"UPDATE materials SET {assignments} WHERE id = ?",
                [*fields.values(), material_id],
            )
            if cursor.rowcount == 0:
                raise MaterialNotFoundError(material_id)

    def delete_material(self, material_id: str) -> bool:
        with self.transaction() as cursor:
            cursor.execute("DELETE FROM materials WHERE id = ?", (material_id,))
            return cursor.rowcount > 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()
