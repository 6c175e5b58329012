"""
Batch embedding job: keeps every content item's embedding current.

Public API
----------
BatchEmbeddingJob(store, embedder, ...).run(should_stop=None)
    → RunSummary
    Fetch pending content, estimate cost, then normalize → embed → upsert
    each item sequentially in fixed-size, rate-limited batches.

BatchEmbeddingJob.save_summary(summary)
    → Path of the ``embedding_results_<timestamp>.json`` artifact.

Items are processed one at a time.  A failure on one item is counted and
logged and never stops the batch; only configuration problems (raised
before ``run`` is called) are fatal.
"""
from __future__ import annotations

import inspect
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Union

from waypoint.config import settings
from waypoint.exceptions import ItemProcessingError
from waypoint.models.records import ContentItem, RunSummary
from waypoint.services.embedding import EmbeddingProvider
from waypoint.services.rate_limiter import FixedDelay, RateLimiter
from waypoint.services.vector_store import VectorStore
from waypoint.utils.helpers import estimate_cost, estimate_tokens, normalize_text, truncate_text

logger = logging.getLogger(__name__)

StopCheck = Callable[[], Union[bool, Awaitable[bool]]]


class BatchEmbeddingJob:
    """
    Sequential, rate-limited embedding of pending content.

    Every knob defaults to the corresponding setting and can be overridden
    per run.  ``item_limiter`` is awaited after each item and
    ``batch_limiter`` between batches; by default they are fixed delays of
    ``item_delay`` and ``batch_delay`` seconds.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingProvider,
        *,
        model: Optional[str] = None,
        batch_size: Optional[int] = None,
        item_delay: Optional[float] = None,
        batch_delay: Optional[float] = None,
        cost_per_1k_tokens: Optional[float] = None,
        max_chars: Optional[int] = None,
        chars_per_token: Optional[int] = None,
        item_limiter: Optional[RateLimiter] = None,
        batch_limiter: Optional[RateLimiter] = None,
        results_dir: Optional[Union[str, Path]] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.model = model or settings.EMBEDDING_MODEL
        self.batch_size = batch_size if batch_size is not None else settings.EMBEDDING_BATCH_SIZE
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.cost_per_1k_tokens = (
            cost_per_1k_tokens
            if cost_per_1k_tokens is not None
            else settings.EMBEDDING_COST_PER_1K_TOKENS
        )
        self.max_chars = max_chars if max_chars is not None else settings.embedding_max_chars
        self.chars_per_token = (
            chars_per_token if chars_per_token is not None else settings.CHARS_PER_TOKEN
        )
        if self.chars_per_token < 1:
            raise ValueError("chars_per_token must be >= 1")
        self.item_limiter = item_limiter or FixedDelay(
            settings.EMBEDDING_ITEM_DELAY if item_delay is None else item_delay
        )
        self.batch_limiter = batch_limiter or FixedDelay(
            settings.EMBEDDING_BATCH_DELAY if batch_delay is None else batch_delay
        )
        self.results_dir = Path(results_dir or settings.RESULTS_DIR)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, should_stop: Optional[StopCheck] = None) -> RunSummary:
        """
        Embed every pending item and return the run summary.

        *should_stop* is consulted before each batch; when it returns true the
        job stops cleanly and the summary is marked ``stopped_early``.
        """
        started = datetime.now(timezone.utc)
        t0 = time.perf_counter()

        items = await self.store.fetch_pending_content(self.model)
        total = len(items)

        if total == 0:
            logger.info("All content already has %s embeddings, nothing to do", self.model)
            return self._summary(started, t0, total=0, success=0, failed=0, tokens=0)

        tokens = estimate_tokens((i.text_content for i in items), self.chars_per_token)
        cost = estimate_cost(tokens, self.cost_per_1k_tokens)
        logger.info(
            "Embedding %d items with %s: ~%d tokens, estimated cost $%.4f",
            total,
            self.model,
            tokens,
            cost,
        )

        batches = [
            items[i:i + self.batch_size] for i in range(0, total, self.batch_size)
        ]
        success = 0
        failed = 0
        errors: List[str] = []
        batch_sizes: List[int] = []
        stopped_early = False

        for index, batch in enumerate(batches, start=1):
            if should_stop is not None and await _evaluate(should_stop):
                logger.warning(
                    "Stop requested, halting before batch %d/%d", index, len(batches)
                )
                stopped_early = True
                break
            if index > 1:
                await self.batch_limiter.acquire()

            logger.info("Processing batch %d/%d (%d items)", index, len(batches), len(batch))
            batch_sizes.append(len(batch))

            for item in batch:
                try:
                    await self._process_item(item)
                    success += 1
                except ItemProcessingError as exc:
                    failed += 1
                    errors.append(str(exc))
                    logger.error("Failed to embed %s", exc)
                await self.item_limiter.acquire()

            logger.info(
                "Batch %d done: %d succeeded, %d failed so far", index, success, failed
            )

        summary = self._summary(
            started,
            t0,
            total=total,
            success=success,
            failed=failed,
            tokens=tokens,
            batch_sizes=batch_sizes,
            stopped_early=stopped_early,
            errors=errors,
        )
        logger.info(
            "Embedding run finished: %d/%d succeeded (%.1f%%), %d failed in %.2fs",
            summary.success,
            summary.total,
            summary.success_rate,
            summary.failed,
            summary.duration_seconds,
        )
        return summary

    def save_summary(
        self, summary: RunSummary, results_dir: Optional[Union[str, Path]] = None
    ) -> Path:
        """Write *summary* as ``embedding_results_<timestamp>.json`` and return its path."""
        directory = Path(results_dir) if results_dir is not None else self.results_dir
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        path = directory / f"embedding_results_{stamp}.json"
        with path.open("w", encoding="utf-8") as fh:
            json.dump(summary.to_dict(), fh, indent=2)
        logger.info("Run summary saved to %s", path)
        return path

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _process_item(self, item: ContentItem) -> None:
        """
        Normalize, embed and persist one item.

        Raises:
            ItemProcessingError: tagged with the stage that failed.
        """
        stage = "normalize"
        try:
            text = normalize_text(item.text_content, self.max_chars)
            if not text:
                raise ValueError("no text to embed")

            stage = "embed"
            vector = await self.embedder.embed_text(text, model=self.model)

            stage = "store"
            written = await self.store.upsert_embedding(
                item.content_type, item.content_id, vector, self.model
            )
            if not written:
                raise LookupError("row no longer exists")
        except Exception as exc:
            raise ItemProcessingError(
                item.content_type, item.content_id, str(exc) or type(exc).__name__, stage
            ) from exc

        logger.debug(
            "Embedded %s ID %s: %s",
            item.content_type,
            item.content_id,
            truncate_text(text, 60),
        )

    def _summary(
        self,
        started: datetime,
        t0: float,
        *,
        total: int,
        success: int,
        failed: int,
        tokens: int,
        batch_sizes: Optional[List[int]] = None,
        stopped_early: bool = False,
        errors: Optional[List[str]] = None,
    ) -> RunSummary:
        return RunSummary(
            total=total,
            success=success,
            failed=failed,
            duration_seconds=round(time.perf_counter() - t0, 3),
            estimated_cost=estimate_cost(tokens, self.cost_per_1k_tokens),
            estimated_tokens=tokens,
            model=self.model,
            start_time=started.isoformat(),
            end_time=datetime.now(timezone.utc).isoformat(),
            batch_sizes=batch_sizes or [],
            stopped_early=stopped_early,
            errors=errors or [],
        )


async def _evaluate(check: StopCheck) -> bool:
    result = check()
    if inspect.isawaitable(result):
        result = await result
    return bool(result)
