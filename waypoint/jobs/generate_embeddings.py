"""
Batch embedding job entry point.

    python -m waypoint.jobs.generate_embeddings [--batch-size N]
        [--item-delay S] [--batch-delay S] [--model M] [--templates]

Checks configuration, logs coverage before and after the run, embeds every
pending content item, writes ``embedding_results_<timestamp>.json`` to
RESULTS_DIR and appends to ``embedding_generation_<date>.log`` in LOG_DIR.
Exits 1 on a fatal error (missing configuration, store unreachable).
"""
import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional

from waypoint.config import settings
from waypoint.database import close_db, get_session_factory
from waypoint.exceptions import ConfigurationError, StoreError
from waypoint.services.batch_embedding import BatchEmbeddingJob
from waypoint.services.embedding import EmbeddingClient
from waypoint.services.pgvector_store import PgVectorStore
from waypoint.services.template_library import TemplateLibrary
from waypoint.services.vector_store import VectorStore

logger = logging.getLogger("waypoint.jobs.generate_embeddings")


def configure_logging(log_dir: str, verbose: bool = False) -> Path:
    """Console + dated file logging; returns the log file path."""
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / f"embedding_generation_{date.today().isoformat()}.log"

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.DEBUG)
    root.addHandler(console)
    root.addHandler(file_handler)
    return log_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m waypoint.jobs.generate_embeddings",
        description="Generate embeddings for content lacking a current-model vector.",
    )
    parser.add_argument("--batch-size", type=int, default=settings.EMBEDDING_BATCH_SIZE)
    parser.add_argument(
        "--item-delay", type=float, default=settings.EMBEDDING_ITEM_DELAY,
        help="Seconds to wait after each item",
    )
    parser.add_argument(
        "--batch-delay", type=float, default=settings.EMBEDDING_BATCH_DELAY,
        help="Seconds to wait between batches",
    )
    parser.add_argument("--model", default=settings.EMBEDDING_MODEL)
    parser.add_argument(
        "--templates", action="store_true",
        help="Also re-embed templates whose vector is missing or from another model",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    return parser


async def log_coverage(store: VectorStore, model: str, label: str) -> None:
    stats = await store.coverage(model)
    logger.info("%s coverage (%s):", label, model)
    for entry in stats:
        logger.info(
            "  %-10s %d/%d embedded (%.1f%%), latest %s",
            entry.content_type,
            entry.items_with_embeddings,
            entry.total_items,
            entry.coverage_percentage,
            entry.latest_embedding_date.isoformat() if entry.latest_embedding_date else "never",
        )


async def run(args: argparse.Namespace) -> int:
    settings.require_embedding_job_config()

    store = PgVectorStore(get_session_factory())
    embedder = EmbeddingClient(model=args.model)
    job = BatchEmbeddingJob(
        store,
        embedder,
        model=args.model,
        batch_size=args.batch_size,
        item_delay=args.item_delay,
        batch_delay=args.batch_delay,
    )

    try:
        await log_coverage(store, args.model, "Before")
        summary = await job.run()
        job.save_summary(summary)

        if args.templates:
            library = TemplateLibrary(store, embedder, model=args.model)
            await library.reembed_stale_templates()

        await log_coverage(store, args.model, "After")
    finally:
        await close_db()

    logger.info(
        "Summary: total=%d success=%d failed=%d success_rate=%.1f%% "
        "estimated_cost=$%.4f duration=%.2fs",
        summary.total,
        summary.success,
        summary.failed,
        summary.success_rate,
        summary.estimated_cost,
        summary.duration_seconds,
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    log_path = configure_logging(settings.LOG_DIR, verbose=args.verbose)
    logger.info("Logging to %s", log_path)

    try:
        return asyncio.run(run(args))
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 1
    except StoreError as exc:
        logger.error("Database unavailable: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
