"""
lesson-engine CLI: index a curriculum, search it, or generate a lesson.
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

import structlog

from lesson_engine.core.observability.logger_config import configure_structlog
from lesson_engine.core.settings import settings
from lesson_engine.domain.exceptions import GenerationFailure
from lesson_engine.domain.schemas.curriculum import ContentFilter
from lesson_engine.domain.schemas.orchestration import LessonRequest
from lesson_engine.infrastructure.container import LessonEngineContainer
from lesson_engine.infrastructure.repositories.curriculum_loader import load_curriculum_file
from lesson_engine.infrastructure.repositories.in_memory_content_repository import (
    InMemoryContentRepository,
)

logger = structlog.get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lesson-engine", description="Curriculum RAG lesson engine.")
    parser.add_argument("--curriculum", default=None, help="Curriculum JSON export (weeks/days/activities)")
    parser.add_argument("--embeddings", default=None, help="JSON side-file for stored embeddings")
    parser.add_argument("--console-logs", action="store_true", help="Human-readable logs instead of JSON")
    sub = parser.add_subparsers(dest="command", required=True)

    index = sub.add_parser("index", help="Embed every changed content unit")
    index.add_argument("--week", type=int, default=None)
    index.add_argument("--force", action="store_true", help="Re-embed even when the hash matches")

    search = sub.add_parser("search", help="Hybrid keyword + semantic search")
    search.add_argument("query")
    search.add_argument("--week", type=int, default=None)
    search.add_argument("--day", type=int, default=None)
    search.add_argument("--limit", type=int, default=settings.RETRIEVAL_DEFAULT_LIMIT)

    generate = sub.add_parser("generate", help="Autonomous lesson generation")
    generate.add_argument("--topic", default=None)
    generate.add_argument("--week", type=int, default=None)
    generate.add_argument("--day", type=int, default=None)
    generate.add_argument("--activity", type=int, default=0)
    generate.add_argument("--difficulty", default=None)
    generate.add_argument("--timeout", type=float, default=None)
    return parser


def _filters(week: Optional[int], day: Optional[int] = None) -> Optional[ContentFilter]:
    if week is None and day is None:
        return None
    return ContentFilter(week_id=week, day_index=day)


async def _run(args: argparse.Namespace) -> int:
    content_store = None
    embeddings_path = args.embeddings or settings.CURRICULUM_EMBEDDINGS_PATH
    if args.curriculum:
        content_store = InMemoryContentRepository(
            load_curriculum_file(args.curriculum), embeddings_path=embeddings_path
        )

    container = LessonEngineContainer(content_store=content_store, start_janitor=False)
    await container.startup()
    try:
        if args.command == "index":
            stats = await container.indexer.index_curriculum(_filters(args.week), force=args.force)
            store = container.content_store
            if isinstance(store, InMemoryContentRepository):
                store.persist()
            print(stats.model_dump_json(indent=2))
            return 1 if stats.failed else 0

        if args.command == "search":
            results = await container.retriever.retrieve(
                args.query, filters=_filters(args.week, args.day), limit=args.limit
            )
            print(json.dumps([r.model_dump(mode="json") for r in results], ensure_ascii=False, indent=2))
            return 0

        request = LessonRequest(
            topic=args.topic,
            week_id=args.week,
            day_index=args.day,
            activity_index=args.activity,
            difficulty=args.difficulty,
            timeout_seconds=args.timeout,
        )
        try:
            artifact = await container.lesson_use_case.execute(request)
        except GenerationFailure as exc:
            logger.error("cli_generation_failed", error=str(exc))
            return 2
        print(artifact.model_dump_json(indent=2))
        return 0
    finally:
        await container.shutdown()


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_structlog(json_logs=False if args.console_logs else None)
    try:
        return asyncio.run(_run(args))
    except ValueError as exc:
        logger.error("cli_invalid_input", error=str(exc))
        return 2


if __name__ == "__main__":
    sys.exit(main())
