"""
Template similarity search.

``similarity_threshold`` and ``match_limit`` are required arguments on every
call; the service holds no tunable state, so one instance can serve any
number of concurrent requests.

An empty result is the cache-miss signal.  A query vector that cannot be
compared (wrong dimensionality, NaN/inf components, zero magnitude) or a
store failure raises :class:`SearchError` instead.
"""
from __future__ import annotations

import logging
import math
import time
from typing import List, Optional, Sequence

from waypoint.config import settings
from waypoint.exceptions import SearchError, StoreError
from waypoint.models.records import TemplateMatch, UserQueryContext
from waypoint.services.embedding import EmbeddingProvider
from waypoint.services.query_builder import build_profile_text
from waypoint.services.vector_store import VectorStore

logger = logging.getLogger(__name__)


class SimilaritySearchService:
    """Embeds learner profiles and ranks stored templates against them."""

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingProvider,
        dimension: Optional[int] = None,
        model: Optional[str] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.dimension = dimension or getattr(embedder, "dimension", None) or settings.VECTOR_DIMENSION
        self.model = model or getattr(embedder, "model", None) or settings.EMBEDDING_MODEL

    def validate_query_vector(self, query_vector: Sequence[float]) -> List[float]:
        """
        Return *query_vector* as a list of floats.

        Raises:
            SearchError: (``malformed_query=True``) on wrong dimensionality,
                non-numeric or non-finite components, or a zero vector.
        """
        if query_vector is None:
            raise SearchError("Query vector is missing", malformed_query=True)
        try:
            vector = [float(v) for v in query_vector]
        except (TypeError, ValueError) as exc:
            raise SearchError(f"Query vector is not numeric: {exc}", malformed_query=True) from exc

        if len(vector) != self.dimension:
            raise SearchError(
                f"Query vector has {len(vector)} dimensions, expected {self.dimension}",
                malformed_query=True,
            )
        if not all(math.isfinite(v) for v in vector):
            raise SearchError("Query vector contains NaN or infinite components", malformed_query=True)
        if not any(vector):
            raise SearchError("Query vector has zero magnitude", malformed_query=True)
        return vector

    async def search(
        self,
        query_vector: Sequence[float],
        *,
        similarity_threshold: float,
        match_limit: int,
    ) -> List[TemplateMatch]:
        """
        Templates whose similarity to *query_vector* is at least
        *similarity_threshold*, best first, at most *match_limit* of them.

        A threshold of 0 returns the best *match_limit* templates whatever
        their score.
        """
        if not 0.0 <= similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be between 0 and 1")
        if match_limit < 1:
            raise ValueError("match_limit must be >= 1")

        vector = self.validate_query_vector(query_vector)

        t0 = time.perf_counter()
        try:
            matches = await self.store.search_templates(
                vector, similarity_threshold, match_limit, self.model
            )
        except StoreError as exc:
            raise SearchError(f"Template search failed: {exc}") from exc
        elapsed_ms = (time.perf_counter() - t0) * 1000

        logger.info(
            "Template search: %d match(es) at threshold %.2f (limit %d) in %.1f ms",
            len(matches),
            similarity_threshold,
            match_limit,
            elapsed_ms,
        )
        for rank, match in enumerate(matches, start=1):
            logger.debug(
                "  #%d %s (%s) similarity=%.3f",
                rank,
                match.template.name,
                match.template.template_id,
                match.similarity,
            )
        return matches

    async def embed_context(self, context: UserQueryContext) -> List[float]:
        """Embed the canonical profile text of *context*."""
        text = build_profile_text(context)
        logger.debug("Profile text: %s", text)
        return await self.embedder.embed_text(text, model=self.model)

    async def find_similar_templates(
        self,
        context: UserQueryContext,
        *,
        similarity_threshold: float,
        match_limit: int,
        query_vector: Optional[List[float]] = None,
    ) -> List[TemplateMatch]:
        """Embed *context* (unless *query_vector* is given) and search."""
        if query_vector is None:
            query_vector = await self.embed_context(context)
        return await self.search(
            query_vector,
            similarity_threshold=similarity_threshold,
            match_limit=match_limit,
        )
