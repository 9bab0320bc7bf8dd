#!/usr/bin/env python
"""Process pending course materials from the command line.

Usage:
    python scripts/process_materials.py                       # Every pending material
    python scripts/process_materials.py --course COURSE_ID    # One course
    python scripts/process_materials.py --chapter CHAPTER_ID  # One chapter
    python scripts/process_materials.py --reset-failed        # Retry failed ones too
    python scripts/process_materials.py --no-structure        # No Ollama calls
"""
import argparse
import asyncio
import sys
import time
from pathlib import Path
from typing import Dict, Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from coursemind import config
from coursemind.db import Database, MaterialStatus
from coursemind.llm_client import OllamaClient
from coursemind.rag.ingest import MaterialProcessor, ProcessingResult
from coursemind.rag.store_sqlite import SQLiteVectorStore
import structlog

logger = structlog.get_logger()

RULE = "─" * 64


class BatchReport:
    """Prints one line per material and a closing summary."""

    def __init__(self, filenames: Dict[str, str], verbose: bool = False):
        self.filenames = filenames
        self.verbose = verbose
        self.started = time.monotonic()

    def header(self, count: int, scope: str):
        print(RULE)
        print(f"  Processing {count} material(s) {scope}")
        print(RULE)

    def material_done(
        self,
        current: int,
        total: int,
        material_id: str,
        result: Optional[ProcessingResult],
    ):
        name = self.filenames.get(material_id, material_id)
        prefix = f"  [{current:>{len(str(total))}}/{total}]"
        indent = " " * (len(prefix) + 7)

        if result is None:
            print(f"{prefix} SKIP  {name} (no longer processable)")
        elif not result.success:
            print(f"{prefix} FAIL  {name}: {result.error}")
        else:
            tag = "WARN" if result.degraded else "OK  "
            print(
                f"{prefix} {tag}  {name}: {result.chunks_created} chunk(s), "
                f"{result.processing_time_ms / 1000:.1f}s"
            )
            for entry in result.degraded:
                print(f"{indent}{entry['stage']}: {entry['reason']}")

        if self.verbose and result is not None:
            for event in result.stages:
                print(f"{indent}{event.percentage:>4}% {event.stage:<9} {event.message}")

    def summary(self, stats: Dict[str, int]):
        elapsed = time.monotonic() - self.started
        print(RULE)
        print(
            f"  {stats['materials_processed']} completed "
            f"({stats['materials_degraded']} degraded), "
            f"{stats['materials_failed']} failed"
        )
        print(
            f"  {stats['chunks_created']} chunks, "
            f"{stats['embeddings_generated']} embeddings in {elapsed:.1f}s"
        )
        print(RULE)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Extract, chunk and embed pending course materials",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--course", help="Only materials of this course")
    scope.add_argument("--chapter", help="Only materials of this chapter")

    parser.add_argument(
        "--reset-failed",
        action="store_true",
        help="Also retry materials whose last run failed",
    )
    parser.add_argument(
        "--no-structure",
        action="store_true",
        help=f"Skip AI structuring with {config.STRUCTURE_MODEL}",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Print every processing stage",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    """Process the selected materials; returns the process exit status."""
    database = Database()
    vector_store = SQLiteVectorStore()

    try:
        statuses = [MaterialStatus.PENDING]
        if args.reset_failed:
            statuses.append(MaterialStatus.FAILED)

        materials = database.list_materials(
            chapter_id=args.chapter, course_id=args.course, statuses=statuses
        )
        if not materials:
            print("Nothing to process.")
            return 0

        processor = MaterialProcessor(
            database,
            vector_store,
            structurer=None if args.no_structure else OllamaClient(),
        )
        report = BatchReport(
            {m.id: m.original_filename for m in materials}, verbose=args.verbose
        )

        if args.chapter:
            scope = f"in chapter {args.chapter}"
        elif args.course:
            scope = f"in course {args.course}"
        else:
            scope = f"from {config.MATERIALS_DB_PATH}"
        report.header(len(materials), scope)

        stats = await processor.process_many(
            [m.id for m in materials], on_material_done=report.material_done
        )
        report.summary(stats)

        return 1 if stats["materials_failed"] else 0
    finally:
        vector_store.close()
        database.close()


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 1
    except Exception as e:
        logger.error("process_materials_failed", error=str(e), error_type=type(e).__name__)
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
