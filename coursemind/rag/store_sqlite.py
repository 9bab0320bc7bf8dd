"""SQLite vector store for course-scoped semantic search.

Handles:
- Embedding persistence (float32 blobs plus JSON metadata)
- Atomic bulk upsert and per-material replacement
- Cosine-similarity top-K search
- Cascade deletion by material, chapter or course

Search is an exact linear scan over the rows of one course. That is the
scale ceiling of this store: it is sized for per-course corpora of a few
thousand chunks, not for approximate nearest-neighbor workloads.
"""
import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

import numpy as np
import structlog

from coursemind import config

logger = structlog.get_logger()


@dataclass
class EmbeddingRecord:
    """One embedded chunk, owned by a material."""

    course_id: str
    chapter_id: str
    material_id: str
    chunk_index: int
    content: str
    vector: np.ndarray
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScoredChunk:
    """A stored chunk with its similarity to a query vector."""

    course_id: str
    chapter_id: str
    material_id: str
    chunk_index: int
    content: str
    similarity: float
    metadata: Dict[str, Any]


def cosine_similarity(a, b) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero norm or the dimensions differ,
    so the result is never NaN. The value is clipped to [-1, 1].
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()

    if a.shape != b.shape:
        return 0.0

    denominator = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if denominator == 0.0:
        return 0.0

    similarity = float(np.dot(a, b)) / denominator
    return max(-1.0, min(1.0, similarity))


def _to_blob(vector) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


class SQLiteVectorStore:
    """SQLite-backed vector store with exact cosine search."""

    def __init__(self, db_path: Optional[str] = None):
        """Open (or create) the vector store.

        Args:
            db_path: SQLite file path, or ":memory:" (default from config)
        """
        self.db_path = str(db_path or config.VECTOR_DB_PATH)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")

        self._init_schema()

        logger.info("vector_store_initialized", db_path=self.db_path)

    def _init_schema(self) -> None:
        with self.transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS embeddings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    course_id TEXT NOT NULL,
                    chapter_id TEXT NOT NULL,
                    material_id TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    metadata TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(material_id, chunk_index)
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_embeddings_course ON embeddings(course_id)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_embeddings_chapter ON embeddings(chapter_id)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_embeddings_material ON embeddings(material_id)"
            )

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

    def _insert(self, cursor: sqlite3.Cursor, records: Sequence[EmbeddingRecord]) -> int:
        cursor.executemany(
            """
            INSERT OR REPLACE INTO embeddings (
                course_id, chapter_id, material_id, chunk_index,
                content, embedding, metadata
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    r.course_id,
                    r.chapter_id,
                    r.material_id,
                    r.chunk_index,
                    r.content,
                    _to_blob(r.vector),
                    json.dumps(r.metadata or {}),
                )
                for r in records
            ],
        )
        return len(records)

    def add_embeddings(self, records: Sequence[EmbeddingRecord]) -> int:
        """Upsert embedding records keyed on (material_id, chunk_index).

        The whole batch is written in one transaction.

        Args:
            records: Records to write

        Returns:
            Number of records written
        """
        if not records:
            return 0

        try:
            with self.transaction() as cursor:
                added = self._insert(cursor, records)
        except sqlite3.Error as e:
            logger.error("embeddings_insert_failed", count=len(records), error=str(e))
            raise

        logger.info("embeddings_added", count=added)
        return added

    def replace_material_embeddings(
        self, material_id: str, records: Sequence[EmbeddingRecord]
    ) -> int:
        """Replace every embedding of a material in one transaction.

        Args:
            material_id: Material whose rows are replaced
            records: New records (all must belong to material_id)

        Returns:
            Number of records written

        Raises:
            ValueError: If a record belongs to another material
        """
        for record in records:
            if record.material_id != material_id:
                raise ValueError(
                    f"Record for material {record.material_id} passed to "
                    f"replace_material_embeddings({material_id})"
                )

        try:
            with self.transaction() as cursor:
                cursor.execute(
                    "DELETE FROM embeddings WHERE material_id = ?", (material_id,)
                )
                removed = cursor.rowcount
                added = self._insert(cursor, records)
        except sqlite3.Error as e:
            logger.error(
                "embeddings_replace_failed", material_id=material_id, error=str(e)
            )
            raise

        logger.info(
            "material_embeddings_replaced",
            material_id=material_id,
            removed=removed,
            added=added,
        )
        return added

    def query_similar(
        self,
        course_id: str,
        query_vector,
        limit: int = 5,
        chapter_id: Optional[str] = None,
        material_id: Optional[str] = None,
    ) -> List[ScoredChunk]:
        """Find the stored chunks most similar to a query vector.

        Args:
            course_id: Course to search in
            query_vector: Query embedding
            limit: Maximum number of results
            chapter_id: Optional chapter filter
            material_id: Optional material filter

        Returns:
            ScoredChunk list sorted by similarity (best first); ties are
            ordered by ascending chunk_index, then material_id
        """
        if limit <= 0:
            return []

        sql = "SELECT * FROM embeddings WHERE course_id = ?"
        params: List[Any] = [course_id]

        if chapter_id:
            sql += " AND chapter_id = ?"
            params.append(chapter_id)

        if material_id:
            sql += " AND material_id = ?"
            params.append(material_id)

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()

        if not rows:
            logger.debug("no_embeddings_for_course", course_id=course_id)
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        results = []
        mismatched = 0
        for row in rows:
            stored = _from_blob(row["embedding"])
            if stored.shape != query.shape:
                mismatched += 1
            results.append(
                ScoredChunk(
                    course_id=row["course_id"],
                    chapter_id=row["chapter_id"],
                    material_id=row["material_id"],
                    chunk_index=row["chunk_index"],
                    content=row["content"],
                    similarity=cosine_similarity(query, stored),
                    metadata=json.loads(row["metadata"] or "{}"),
                )
            )

        if mismatched:
            # Mismatched rows score 0.0; usually an EMBEDDING_DIM change without re-embedding
            logger.warning(
                "embedding_dimension_mismatch",
                course_id=course_id,
                query_dim=int(query.shape[0]) if query.ndim else 0,
                mismatched_rows=mismatched,
                scanned=len(rows),
            )

        results.sort(key=lambda r: (-r.similarity, r.chunk_index, r.material_id))
        top_results = results[:limit]

        logger.debug(
            "vector_search_completed",
            course_id=course_id,
            scanned=len(rows),
            results_found=len(top_results),
            top_similarity=round(top_results[0].similarity, 3),
        )

        return top_results

    def _delete(self, column: str, value: str) -> int:
        with self.transaction() as cursor:
            cursor.execute(f"DELETE FROM embeddings WHERE {column} = ?", (value,))
            deleted = cursor.rowcount

        logger.info("embeddings_deleted", scope=column, value=value, count=deleted)
        return deleted

    def delete_by_material(self, material_id: str) -> int:
        """Delete all embeddings of a material; returns the count removed."""
        return self._delete("material_id", material_id)

    def delete_by_chapter(self, chapter_id: str) -> int:
        """Delete all embeddings of a chapter; returns the count removed."""
        return self._delete("chapter_id", chapter_id)

    def delete_by_course(self, course_id: str) -> int:
        """Delete all embeddings of a course; returns the count removed."""
        return self._delete("course_id", course_id)

    def has_course_embeddings(self, course_id: str) -> bool:
        """Check whether a course has any stored embeddings."""
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM embeddings WHERE course_id = ? LIMIT 1", (course_id,)
            ).fetchone()
        return row is not None

    def count(
        self, course_id: Optional[str] = None, material_id: Optional[str] = None
    ) -> int:
        """Count stored embeddings, optionally narrowed to a course or material."""
        sql = "SELECT COUNT(*) FROM embeddings WHERE 1 = 1"
        params: List[Any] = []
        if course_id:
            sql += " AND course_id = ?"
            params.append(course_id)
        if material_id:
            sql += " AND material_id = ?"
            params.append(material_id)

        with self._lock:
            return self._conn.execute(sql, params).fetchone()[0]

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store.

        Returns:
            Dictionary with store statistics
        """
        with self._lock:
            row = self._conn.execute("""
                SELECT
                    COUNT(*) AS total,
                    COUNT(DISTINCT course_id) AS courses,
                    COUNT(DISTINCT chapter_id) AS chapters,
                    COUNT(DISTINCT material_id) AS materials
                FROM embeddings
            """).fetchone()

        return {
            "total_embeddings": row["total"],
            "courses": row["courses"],
            "chapters": row["chapters"],
            "materials": row["materials"],
            "db_path": self.db_path,
        }

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()
        logger.info("vector_store_closed", db_path=self.db_path)
