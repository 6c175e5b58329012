"""
Service dependencies for FastAPI routes.

Long-lived clients (store, embedder, generator) are built once per process;
request-scoped services are cheap wrappers around them.  Tests replace any
of these through ``app.dependency_overrides``.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends

from waypoint.database import get_session_factory
from waypoint.exceptions import ConfigurationError
from waypoint.services.customization import TemplateCustomizer
from waypoint.services.embedding import EmbeddingClient, EmbeddingProvider
from waypoint.services.generation import RoadmapGenerator, RoadmapGeneratorProtocol
from waypoint.services.pgvector_store import PgVectorStore
from waypoint.services.roadmap_service import RoadmapOrchestrator
from waypoint.services.similarity_search import SimilaritySearchService
from waypoint.services.template_library import TemplateLibrary
from waypoint.services.vector_store import VectorStore

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_vector_store() -> VectorStore:
    """The pgvector-backed store for this process."""
    return PgVectorStore(get_session_factory())


@lru_cache(maxsize=1)
def get_embedder() -> EmbeddingProvider:
    """Embedding client. Raises ConfigurationError without EMBEDDING_API_KEY."""
    return EmbeddingClient()


@lru_cache(maxsize=1)
def get_generator() -> RoadmapGeneratorProtocol:
    return RoadmapGenerator()


def get_search_service(
    store: VectorStore = Depends(get_vector_store),
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> SimilaritySearchService:
    return SimilaritySearchService(store, embedder)


def get_template_library(
    store: VectorStore = Depends(get_vector_store),
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> TemplateLibrary:
    return TemplateLibrary(store, embedder)


def get_orchestrator(
    search: SimilaritySearchService = Depends(get_search_service),
    library: TemplateLibrary = Depends(get_template_library),
    generator: RoadmapGeneratorProtocol = Depends(get_generator),
    store: VectorStore = Depends(get_vector_store),
) -> RoadmapOrchestrator:
    """Orchestrator with inline template write-back (errors logged, not raised)."""
    return RoadmapOrchestrator(
        search,
        TemplateCustomizer(store),
        generator,
        library,
    )


def get_optional_embedder() -> Optional[EmbeddingProvider]:
    """The embedder, or ``None`` when it is not configured (health checks)."""
    try:
        return get_embedder()
    except ConfigurationError as exc:
        logger.warning("Embedding service not configured: %s", exc)
        return None
