"""Retriever for semantic search over a course's processed materials.

Handles:
- Query embedding generation
- Course-scoped vector search with chapter/material narrowing
- Result annotation for citation display
- Context formatting for the generation service
"""
from typing import List, Dict, Any, Optional
from dataclasses import dataclass
import structlog

from coursemind import config
from coursemind.rag.embedder import embed
from coursemind.rag.store_sqlite import SQLiteVectorStore

logger = structlog.get_logger()


@dataclass
class RetrievalResult:
    """A single retrieved chunk with its provenance."""

    content: str
    similarity: float
    course_id: str
    chapter_id: str
    material_id: str
    chunk_index: int
    metadata: Dict[str, Any]

    @property
    def source(self) -> str:
        """Get a formatted source string for display."""
        total = self.metadata.get("total_chunks")
        position = f"{self.chunk_index + 1}/{total}" if total else str(self.chunk_index + 1)
        return f"chapter {self.chapter_id} > material {self.material_id} > chunk {position}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "similarity": round(self.similarity, 4),
            "course_id": self.course_id,
            "chapter_id": self.chapter_id,
            "material_id": self.material_id,
            "chunk_index": self.chunk_index,
            "metadata": self.metadata,
            "source": self.source,
        }


class Retriever:
    """Semantic retriever over the vector store."""

    def __init__(
        self,
        vector_store: SQLiteVectorStore,
        top_k: Optional[int] = None,
        embedding_dim: Optional[int] = None,
    ):
        """Initialize the retriever.

        Args:
            vector_store: Store to search
            top_k: Number of results to retrieve (default from config)
            embedding_dim: Embedding dimension (default from config)
        """
        self.vector_store = vector_store
        self.top_k = top_k or config.RETRIEVAL_TOP_K
        self.embedding_dim = embedding_dim or config.EMBEDDING_DIM

    def retrieve(
        self,
        course_id: str,
        query: str,
        k: Optional[int] = None,
        chapter_id: Optional[str] = None,
        material_id: Optional[str] = None,
    ) -> List[RetrievalResult]:
        """Retrieve the chunks of a course most relevant to a query.

        An empty list means no context is available (nothing processed yet,
        or embedding was skipped); callers should treat it as such rather
        than as an error.

        Args:
            course_id: Course to search
            query: User query text
            k: Number of results to return (overrides default)
            chapter_id: Optional chapter filter
            material_id: Optional material filter

        Returns:
            List of RetrievalResult objects, best first
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided", course_id=course_id)
            return []

        k = self.top_k if k is None else k

        if not self.vector_store.has_course_embeddings(course_id):
            logger.info("no_embeddings_for_course", course_id=course_id)
            return []

        query_vector = embed(query, self.embedding_dim)
        scored = self.vector_store.query_similar(
            course_id,
            query_vector,
            limit=k,
            chapter_id=chapter_id,
            material_id=material_id,
        )

        results = [
            RetrievalResult(
                content=chunk.content,
                similarity=chunk.similarity,
                course_id=chunk.course_id,
                chapter_id=chunk.chapter_id,
                material_id=chunk.material_id,
                chunk_index=chunk.chunk_index,
                metadata=chunk.metadata,
            )
            for chunk in scored
        ]

        logger.info(
            "retrieval_completed",
            course_id=course_id,
            query_length=len(query),
            results_returned=len(results),
            top_similarity=round(results[0].similarity, 3) if results else None,
        )

        return results

    def retrieve_context(
        self,
        course_id: str,
        query: str,
        k: Optional[int] = None,
        max_chars: Optional[int] = None,
        chapter_id: Optional[str] = None,
        material_id: Optional[str] = None,
    ) -> str:
        """Retrieve and format context for an LLM prompt.

        Args:
            course_id: Course to search
            query: User query text
            k: Number of results to retrieve
            max_chars: Maximum total characters of context to return
            chapter_id: Optional chapter filter
            material_id: Optional material filter

        Returns:
            Formatted context string, empty when nothing was retrieved
        """
        max_chars = config.MAX_CONTEXT_CHARS if max_chars is None else max_chars
        results = self.retrieve(
            course_id, query, k=k, chapter_id=chapter_id, material_id=material_id
        )

        if not results:
            return ""

        context_parts = []
        total_chars = 0

        for i, result in enumerate(results, 1):
            chunk_text = (
                f"[Source {i}: {result.source}]\n"
                f"{result.content.strip()}\n"
            )

            if total_chars + len(chunk_text) > max_chars:
                # Try to fit a truncated version
                remaining = max_chars - total_chars
                if remaining > 200:
                    context_parts.append(chunk_text[:remaining] + "...\n")
                break

            context_parts.append(chunk_text)
            total_chars += len(chunk_text)

        context = "\n".join(context_parts)

        logger.debug(
            "context_formatted",
            num_chunks=len(context_parts),
            total_chars=len(context),
        )

        return context
