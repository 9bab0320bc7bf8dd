"""Ingest pipeline that turns an uploaded material into searchable chunks.

Orchestrates:
- Material state transitions (pending -> processing -> completed/failed)
- Text extraction (fatal on failure)
- Optional AI structuring (best-effort)
- Chunking, local embedding and vector storage (best-effort)

Each stage returns Continue, Degrade or Abort and the processor folds the
outcomes in order. Only an Abort fails the material.
"""
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union
import structlog

from coursemind import config
from coursemind.db import Database, Material, MaterialStatus, utcnow
from coursemind.errors import (
    CourseMindError,
    EmbeddingError,
    ExtractionError,
    StructuringError,
)
from coursemind.rag.chunker import Chunk, TextChunker
from coursemind.rag.embedder import embed_batch
from coursemind.rag.extractor import DocumentExtractor
from coursemind.rag.store_sqlite import EmbeddingRecord, SQLiteVectorStore

logger = structlog.get_logger()

ProgressCallback = Callable[[str, str, int], None]


class Extractor(Protocol):
    def extract(self, file_path: str, media_type: str) -> str: ...


class Structurer(Protocol):
    async def structure_content(self, raw_text: str) -> str: ...


@dataclass
class Continue:
    value: Any = None


@dataclass
class Degrade:
    stage: str
    reason: str
    error: Optional[CourseMindError] = None


@dataclass
class Abort:
    error: Exception


StageOutcome = Union[Continue, Degrade, Abort]

BatchCallback = Callable[[int, int, str, Optional["ProcessingResult"]], None]


@dataclass
class StageEvent:
    """One entry of the processing log."""

    stage: str
    message: str
    percentage: int
    timestamp: str


@dataclass
class ProcessingResult:
    """Outcome of processing one material."""

    material_id: str
    success: bool = False
    stages: List[StageEvent] = field(default_factory=list)
    extracted_text_length: int = 0
    chunks_created: int = 0
    embeddings_generated: int = 0
    structured_content: Optional[str] = None
    degraded: List[Dict[str, str]] = field(default_factory=list)
    error: Optional[str] = None
    processing_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _Run:
    """Mutable state carried through the stages of one process() call."""

    material: Material
    result: ProcessingResult
    on_progress: Optional[ProgressCallback] = None
    started: float = field(default_factory=time.perf_counter)
    text: Optional[str] = None
    structured: Optional[str] = None

    def report(self, stage: str, message: str, percentage: int) -> None:
        self.result.stages.append(
            StageEvent(
                stage=stage,
                message=message,
                percentage=percentage,
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
        )
        logger.info(
            "processing_stage",
            material_id=self.material.id,
            stage=stage,
            message=message,
            percentage=percentage,
        )
        if self.on_progress:
            # A broken listener never changes the processing outcome
            try:
                self.on_progress(stage, message, percentage)
            except Exception as e:
                logger.warning(
                    "progress_callback_failed",
                    material_id=self.material.id,
                    stage=stage,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)


class MaterialProcessor:
    """Drives a material through the ingestion stages."""

    def __init__(
        self,
        database: Database,
        vector_store: SQLiteVectorStore,
        extractor: Optional[Extractor] = None,
        structurer: Optional[Structurer] = None,
        chunker: Optional[TextChunker] = None,
        embedding_dim: Optional[int] = None,
        max_chunks: Optional[int] = None,
        skip_embeddings: Optional[bool] = None,
        structure_min_chars: Optional[int] = None,
    ):
        """Initialize the processor.

        Args:
            database: Material database
            vector_store: Store receiving the chunk embeddings
            extractor: Text extractor (default: DocumentExtractor)
            structurer: Optional AI structuring service
            chunker: Text chunker (default from config)
            embedding_dim: Embedding dimension (default from config)
            max_chunks: Cap on embedded chunks per material, 0 = no cap
            skip_embeddings: Disable the embedding stage entirely
            structure_min_chars: Texts shorter than this are not structured
        """
        self.database = database
        self.vector_store = vector_store
        self.extractor = extractor or DocumentExtractor()
        self.structurer = structurer
        self.chunker = chunker or TextChunker()
        self.embedding_dim = embedding_dim or config.EMBEDDING_DIM
        self.max_chunks = (
            max_chunks if max_chunks is not None else config.MAX_EMBEDDING_CHUNKS
        )
        self.skip_embeddings = (
            skip_embeddings if skip_embeddings is not None else config.SKIP_EMBEDDINGS
        )
        self.structure_min_chars = (
            structure_min_chars
            if structure_min_chars is not None
            else config.STRUCTURE_MIN_CHARS
        )

        logger.info(
            "material_processor_initialized",
            structurer=type(structurer).__name__ if structurer else None,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            embedding_dim=self.embedding_dim,
            max_chunks=self.max_chunks,
            skip_embeddings=self.skip_embeddings,
        )

    async def process(
        self, material_id: str, on_progress: Optional[ProgressCallback] = None
    ) -> ProcessingResult:
        """Process a pending or failed material to completion.

        The call returns only once the material is completed or failed.
        A fatal error does not raise; it is reported through the returned
        result together with the stage log up to the failure.

        Args:
            material_id: Material to process
            on_progress: Optional callback(stage, message, percentage)

        Returns:
            ProcessingResult

        Raises:
            MaterialNotFoundError: If the material doesn't exist
            InvalidStateError: If the material is processing or completed
        """
        material = self.database.transition(
            material_id,
            MaterialStatus.PROCESSING,
            "process",
            processing_error=None,
            extracted_text=None,
            structured_content=None,
            processed_at=None,
        )
        run = _Run(
            material=material,
            result=ProcessingResult(material_id=material_id),
            on_progress=on_progress,
        )

        # Past this point every exit leaves the material completed or failed
        try:
            self._refresh_chapter(material)
            run.report("LOAD", "Loading material from database...", 5)
            run.report("LOAD", f"Found material: {material.original_filename}", 10)

            for stage in (self._extract, self._structure, self._index):
                outcome = await stage(run)
                if isinstance(outcome, Abort):
                    return self._fail(run, outcome.error)
                if isinstance(outcome, Degrade):
                    run.result.degraded.append(
                        {"stage": outcome.stage, "reason": outcome.reason}
                    )
            return self._complete(run)
        except Exception as e:
            logger.error(
                "material_processing_crashed",
                material_id=material_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            if self.database.get_material(material_id).status is not MaterialStatus.PROCESSING:
                # Already completed or failed; only a follow-up step broke
                return run.result
            return self._fail(run, e)

    async def _extract(self, run: _Run) -> StageOutcome:
        material = run.material
        run.report("EXTRACT", "Extracting text from document...", 15)

        try:
            text = self.extractor.extract(material.file_path, material.media_type)
        except ExtractionError as e:
            return Abort(e)
        except Exception as e:
            return Abort(ExtractionError(f"Extraction failed: {e}"))

        if not text or not text.strip():
            return Abort(ExtractionError("No text content extracted from document"))

        self.database.update_material(material.id, extracted_text=text)
        run.text = text
        run.result.extracted_text_length = len(text)
        run.report("EXTRACT", f"Extracted {len(text)} characters", 30)
        return Continue(text)

    async def _structure(self, run: _Run) -> StageOutcome:
        run.report("STRUCTURE", "Structuring content with AI...", 35)

        if self.structurer is None:
            run.report("STRUCTURE", "AI structuring skipped: no structuring service", 50)
            return Continue(None)

        if len(run.text) < self.structure_min_chars:
            run.report("STRUCTURE", "AI structuring skipped: text too short", 50)
            return Continue(None)

        try:
            structured = await self.structurer.structure_content(run.text)
            if not structured or not structured.strip():
                raise StructuringError("Structuring service returned no content")
        except Exception as e:
            error = e if isinstance(e, StructuringError) else StructuringError(str(e))
            logger.warning(
                "structuring_failed_continuing",
                material_id=run.material.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            run.report("STRUCTURE", f"AI structuring skipped: {error}", 50)
            return Degrade("STRUCTURE", str(error), error)

        self.database.update_material(run.material.id, structured_content=structured)
        run.structured = structured
        run.result.structured_content = structured
        run.report("STRUCTURE", "Content structured successfully", 50)
        return Continue(structured)

    async def _index(self, run: _Run) -> StageOutcome:
        material = run.material
        source_text = run.structured or run.text

        if self.skip_embeddings:
            run.report("EMBED", "Embeddings skipped (disabled by configuration)", 95)
            return Degrade("EMBED", "Embeddings disabled by configuration")

        try:
            run.report("CHUNK", "Chunking text for embedding...", 55)
            chunks = self.chunker.chunk_text(source_text)

            if self.max_chunks and len(chunks) > self.max_chunks:
                logger.warning(
                    "chunks_truncated",
                    material_id=material.id,
                    chunk_count=len(chunks),
                    max_chunks=self.max_chunks,
                )
                chunks = chunks[: self.max_chunks]
                for chunk in chunks:
                    chunk.total_chunks = len(chunks)

            if not chunks:
                raise EmbeddingError("No chunks produced from text")

            run.report("EMBED", f"Generating {len(chunks)} embeddings...", 65)
            vectors = embed_batch([c.text for c in chunks], self.embedding_dim)
            records = self._build_records(material, chunks, vectors)
            stored = self.vector_store.replace_material_embeddings(material.id, records)
        except Exception as e:
            error = e if isinstance(e, EmbeddingError) else EmbeddingError(str(e))
            logger.error(
                "embedding_failed_continuing",
                material_id=material.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            run.report("EMBED", f"Embedding failed: {error}", 95)
            return Degrade("EMBED", str(error), error)

        run.result.chunks_created = len(chunks)
        run.result.embeddings_generated = stored
        run.report("STORE", f"Stored {stored} embeddings", 95)
        return Continue(stored)

    def _build_records(
        self, material: Material, chunks: Sequence[Chunk], vectors
    ) -> List[EmbeddingRecord]:
        return [
            EmbeddingRecord(
                course_id=material.course_id,
                chapter_id=material.chapter_id,
                material_id=material.id,
                chunk_index=chunk.index,
                content=chunk.text,
                vector=vector,
                metadata={
                    "start_char": chunk.start_char,
                    "end_char": chunk.end_char,
                    "total_chunks": chunk.total_chunks,
                },
            )
            for chunk, vector in zip(chunks, vectors)
        ]

    def _complete(self, run: _Run) -> ProcessingResult:
        material = self.database.transition(
            run.material.id,
            MaterialStatus.COMPLETED,
            "complete",
            processed_at=utcnow(),
        )

        result = run.result
        result.success = True
        result.processing_time_ms = run.elapsed_ms()

        self._refresh_chapter(material)
        run.report(
            "COMPLETE",
            f"Processing completed in {result.processing_time_ms / 1000:.2f}s",
            100,
        )

        if result.degraded:
            logger.warning(
                "material_completed_degraded",
                material_id=material.id,
                degraded=result.degraded,
                embeddings_generated=result.embeddings_generated,
            )
        else:
            logger.info(
                "material_processed",
                material_id=material.id,
                extracted_text_length=result.extracted_text_length,
                chunks_created=result.chunks_created,
                processing_time_ms=result.processing_time_ms,
            )

        return result

    def _fail(self, run: _Run, error: Exception) -> ProcessingResult:
        message = str(error) or type(error).__name__
        logger.error(
            "material_processing_failed",
            material_id=run.material.id,
            error=message,
            error_type=type(error).__name__,
        )

        material = self.database.transition(
            run.material.id,
            MaterialStatus.FAILED,
            "fail",
            processing_error=message,
            extracted_text=None,
            structured_content=None,
        )

        result = run.result
        result.success = False
        result.error = message
        result.processing_time_ms = run.elapsed_ms()

        self.vector_store.delete_by_material(material.id)
        self._refresh_chapter(material)

        run.report("ERROR", message, -1)
        return result

    def reset(self, material_id: str) -> Material:
        """Return a material to pending and drop everything derived from it.

        Args:
            material_id: Material to reset

        Returns:
            The reset material

        Raises:
            MaterialNotFoundError: If the material doesn't exist
            InvalidStateError: If the material is currently processing
        """
        material = self.database.transition(
            material_id,
            MaterialStatus.PENDING,
            "reset",
            processing_error=None,
            extracted_text=None,
            structured_content=None,
            processed_at=None,
        )
        removed = self.vector_store.delete_by_material(material_id)
        self._refresh_chapter(material)

        logger.info("material_reset", material_id=material_id, embeddings_removed=removed)
        return material

    async def process_many(
        self,
        material_ids: Sequence[str],
        on_material_done: Optional[BatchCallback] = None,
    ) -> Dict[str, int]:
        """Process several materials one after another.

        A material that can't be claimed (unknown, or already processing
        or completed) is counted as failed and the batch moves on.

        Args:
            material_ids: Materials to process
            on_material_done: Optional callback(current, total, material_id,
                result), result being None for a material that was skipped

        Returns:
            Dictionary with processing statistics
        """
        stats = {
            "materials_processed": 0,
            "materials_failed": 0,
            "materials_degraded": 0,
            "chunks_created": 0,
            "embeddings_generated": 0,
        }

        for idx, material_id in enumerate(material_ids, 1):
            try:
                result = await self.process(material_id)
            except CourseMindError as e:
                logger.error(
                    "material_skipped", material_id=material_id, error=str(e)
                )
                result = None

            if on_material_done:
                on_material_done(idx, len(material_ids), material_id, result)

            if result is None or not result.success:
                stats["materials_failed"] += 1
                continue

            stats["materials_processed"] += 1
            stats["chunks_created"] += result.chunks_created
            stats["embeddings_generated"] += result.embeddings_generated
            if result.degraded:
                stats["materials_degraded"] += 1

        logger.info("process_many_completed", stats=stats)
        return stats

    def _refresh_chapter(self, material: Material) -> None:
        self.database.refresh_chapter_status(material.chapter_id)
