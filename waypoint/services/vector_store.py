"""
Vector store access: the interface the pipeline depends on, plus an
in-process implementation.

Two implementations exist:

* :class:`InMemoryVectorStore` (here) — cosine similarity computed with
  numpy over fetched vectors.  Deterministic; used by the unit tests and for
  local diagnostics.
* :class:`waypoint.services.pgvector_store.PgVectorStore` — the same
  operations pushed down to PostgreSQL/pgvector.

Both rank with :func:`rank_matches` semantics: similarity descending, then
``usage_count`` descending, then ``template_id`` ascending.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from waypoint.models.records import ContentItem, CoverageStats, TemplateMatch, TemplateRecord

logger = logging.getLogger(__name__)


def rank_matches(
    matches: Iterable[TemplateMatch],
    similarity_threshold: float,
    match_limit: int,
) -> List[TemplateMatch]:
    """
    Keep matches clearing the threshold, order them, cap at *match_limit*.

    A threshold of 0 disables the floor entirely so that diagnostics get the
    best ``match_limit`` candidates regardless of quality.
    """
    kept = [
        m for m in matches
        if similarity_threshold <= 0 or m.similarity >= similarity_threshold
    ]
    kept.sort(key=lambda m: (-m.similarity, -m.template.usage_count, m.template.template_id))
    return kept[:match_limit]


class VectorStore(ABC):
    """Reads/writes embeddings and performs nearest-neighbour template search."""

    # ------------------------------------------------------------------
    # Content embeddings (batch job)
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_pending_content(self, model: str) -> List[ContentItem]:
        """Content lacking an embedding produced by *model* (or stale since an edit)."""

    @abstractmethod
    async def upsert_embedding(
        self, content_type: str, content_id: str, vector: List[float], model: str
    ) -> bool:
        """Write the vector for one content row. Idempotent per (type, id)."""

    @abstractmethod
    async def coverage(self, model: str) -> List[CoverageStats]:
        """Per content type: total rows vs rows embedded with *model*."""

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    @abstractmethod
    async def search_templates(
        self,
        query_vector: List[float],
        similarity_threshold: float,
        match_limit: int,
        model: str,
    ) -> List[TemplateMatch]:
        """Nearest templates embedded with *model*, ranked, thresholded, capped."""

    @abstractmethod
    async def insert_template(self, template: TemplateRecord) -> TemplateRecord:
        ...

    @abstractmethod
    async def get_template(self, template_id: str) -> Optional[TemplateRecord]:
        ...

    @abstractmethod
    async def increment_usage(self, template_id: str) -> int:
        """Atomically bump ``usage_count``; returns the new value."""

    @abstractmethod
    async def popular_templates(self, limit: int) -> List[TemplateRecord]:
        ...

    @abstractmethod
    async def count_templates(self) -> int:
        ...

    @abstractmethod
    async def stale_templates(self, model: str) -> List[TemplateRecord]:
        """Templates with no embedding, or one produced by a model other than *model*."""

    @abstractmethod
    async def update_template_embedding(
        self, template_id: str, vector: List[float], model: str
    ) -> bool:
        ...


# ---------------------------------------------------------------------------
# In-process implementation
# ---------------------------------------------------------------------------

class InMemoryVectorStore(VectorStore):
    """
    Dictionary-backed store with numpy cosine similarity.

    Every mutation completes without awaiting, so on a single event loop
    each write (including ``increment_usage``) is atomic.
    """

    def __init__(self) -> None:
        self._content: Dict[Tuple[str, str], ContentItem] = {}
        self._embedded_at: Dict[Tuple[str, str], datetime] = {}
        self._templates: Dict[str, TemplateRecord] = {}
        self.writes = 0

    # -- seeding helpers (upstream authors / fixtures) -------------------

    def add_content(self, item: ContentItem) -> None:
        self._content[(item.content_type, item.content_id)] = item

    def content(self, content_type: str, content_id: str) -> Optional[ContentItem]:
        return self._content.get((content_type, str(content_id)))

    # -- content ---------------------------------------------------------

    async def fetch_pending_content(self, model: str) -> List[ContentItem]:
        pending = []
        for key, item in sorted(self._content.items()):
            embedded_at = self._embedded_at.get(key)
            stale_edit = (
                embedded_at is not None
                and item.last_updated is not None
                and item.last_updated > embedded_at
            )
            if item.embedding is None or item.embedding_model != model or stale_edit:
                pending.append(item.model_copy())
        return pending

    async def upsert_embedding(
        self, content_type: str, content_id: str, vector: List[float], model: str
    ) -> bool:
        key = (content_type, str(content_id))
        item = self._content.get(key)
        if item is None:
            return False
        self._content[key] = item.model_copy(
            update={"embedding": list(vector), "embedding_model": model}
        )
        self._embedded_at[key] = datetime.now(timezone.utc)
        self.writes += 1
        return True

    async def coverage(self, model: str) -> List[CoverageStats]:
        stats: Dict[str, CoverageStats] = {}
        for key, item in self._content.items():
            entry = stats.setdefault(
                item.content_type, CoverageStats(item.content_type, 0, 0)
            )
            entry.total_items += 1
            if item.embedding is not None and item.embedding_model == model:
                entry.items_with_embeddings += 1
                embedded_at = self._embedded_at.get(key)
                if embedded_at and (
                    entry.latest_embedding_date is None
                    or embedded_at > entry.latest_embedding_date
                ):
                    entry.latest_embedding_date = embedded_at
        return [stats[k] for k in sorted(stats)]

    # -- templates -------------------------------------------------------

    async def search_templates(
        self,
        query_vector: List[float],
        similarity_threshold: float,
        match_limit: int,
        model: str,
    ) -> List[TemplateMatch]:
        dimension = len(query_vector)
        candidates = [
            t for t in self._templates.values() if t.has_embedding_for(model, dimension)
        ]
        if not candidates:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        matrix = np.asarray([t.path_embedding for t in candidates], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        matches = [
            TemplateMatch(template=t.model_copy(deep=True), similarity=float(s))
            for t, s in zip(candidates, scores)
        ]
        return rank_matches(matches, similarity_threshold, match_limit)

    async def insert_template(self, template: TemplateRecord) -> TemplateRecord:
        stored = template.model_copy(deep=True)
        if stored.created_at is None:
            stored.created_at = datetime.now(timezone.utc)
        self._templates[stored.template_id] = stored
        self.writes += 1
        return stored.model_copy(deep=True)

    async def get_template(self, template_id: str) -> Optional[TemplateRecord]:
        template = self._templates.get(str(template_id))
        return template.model_copy(deep=True) if template else None

    async def increment_usage(self, template_id: str) -> int:
        template = self._templates.get(str(template_id))
        if template is None:
            return 0
        template.usage_count += 1
        return template.usage_count

    async def popular_templates(self, limit: int) -> List[TemplateRecord]:
        ordered = sorted(
            self._templates.values(), key=lambda t: (-t.usage_count, t.template_id)
        )
        return [t.model_copy(deep=True) for t in ordered[:limit]]

    async def count_templates(self) -> int:
        return len(self._templates)

    async def stale_templates(self, model: str) -> List[TemplateRecord]:
        return [
            t.model_copy(deep=True)
            for t in self._templates.values()
            if t.path_embedding is None or t.embedding_model != model
        ]

    async def update_template_embedding(
        self, template_id: str, vector: List[float], model: str
    ) -> bool:
        template = self._templates.get(str(template_id))
        if template is None:
            return False
        template.path_embedding = list(vector)
        template.embedding_model = model
        self.writes += 1
        return True
