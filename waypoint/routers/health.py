"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends
from datetime import datetime, timezone
from typing import Optional
import logging

from waypoint.dependencies.services import get_optional_embedder, get_vector_store
from waypoint.exceptions import StoreError
from waypoint.models.schemas import HealthCheckResponse
from waypoint.services.embedding import EmbeddingProvider
from waypoint.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(
    store: VectorStore = Depends(get_vector_store),
    embedder: Optional[EmbeddingProvider] = Depends(get_optional_embedder),
):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of the database and embedding service
    """
    # Check database connection
    db_status = "ok"
    templates_count = None
    try:
        templates_count = await store.count_templates()
    except StoreError as e:
        logger.error("Database health check failed: %s", e)
        db_status = "error"

    # Check embedding service
    if embedder is None:
        embedding_status = "not_configured"
    else:
        check = getattr(embedder, "check_health", None)
        healthy = await check() if check is not None else True
        embedding_status = "ok" if healthy else "error"

    overall_status = "healthy" if db_status == "ok" and embedding_status == "ok" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        embedding_service=embedding_status,
        templates_count=templates_count,
        timestamp=datetime.now(timezone.utc),
    )
