"""
Embedding maintenance endpoints.

Route summary
-------------
GET  /coverage  — per content type: total items vs items embedded with the current model.
POST /run       — start the batch embedding job in the background (409 if running).
GET  /status    — status of the current or most recent background run.
POST /stop      — ask the running job to stop at the next batch boundary.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from waypoint.config import settings
from waypoint.dependencies.services import get_embedder, get_vector_store
from waypoint.models.schemas import (
    CoverageEntry,
    CoverageResponse,
    EmbeddingRunRequest,
    EmbeddingRunStatus,
)
from waypoint.services.batch_embedding import BatchEmbeddingJob
from waypoint.services.embedding import EmbeddingProvider
from waypoint.services.embedding_jobs import JobStatus, embedding_job_manager
from waypoint.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _status_response(job_status: JobStatus) -> EmbeddingRunStatus:
    return EmbeddingRunStatus(
        phase=job_status.phase.value,
        elapsed_seconds=job_status.elapsed_seconds,
        stop_requested=job_status.stop_requested,
        summary=job_status.summary,
        artifact_path=job_status.artifact_path,
        errors=job_status.errors,
    )


@router.get("/coverage", response_model=CoverageResponse)
async def embedding_coverage(
    model: Optional[str] = None,
    store: VectorStore = Depends(get_vector_store),
) -> CoverageResponse:
    """Coverage view for *model* (defaults to the configured embedding model)."""
    model = model or settings.EMBEDDING_MODEL
    stats = await store.coverage(model)
    return CoverageResponse(
        model=model,
        content_types=[
            CoverageEntry(
                content_type=s.content_type,
                total_items=s.total_items,
                items_with_embeddings=s.items_with_embeddings,
                coverage_percentage=s.coverage_percentage,
                latest_embedding_date=s.latest_embedding_date,
            )
            for s in stats
        ],
    )


@router.post(
    "/run",
    response_model=EmbeddingRunStatus,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_embedding_run(
    body: Optional[EmbeddingRunRequest] = None,
    store: VectorStore = Depends(get_vector_store),
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> EmbeddingRunStatus:
    """
    Start the batch embedding job as a background task and return immediately.

    Poll ``GET /status`` for progress.  Only one API-started run may be
    active per process.
    """
    if embedding_job_manager.is_running():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An embedding run is already in progress.",
        )

    body = body or EmbeddingRunRequest()
    job = BatchEmbeddingJob(
        store,
        embedder,
        model=body.model,
        batch_size=body.batch_size,
        item_delay=body.item_delay,
        batch_delay=body.batch_delay,
    )
    job_status = embedding_job_manager.start(job)
    return _status_response(job_status)


@router.get("/status", response_model=EmbeddingRunStatus)
async def embedding_run_status() -> EmbeddingRunStatus:
    """Status of the current or most recent background run (404 if none)."""
    job_status = embedding_job_manager.get_status()
    if job_status is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No embedding run has been started in this process.",
        )
    return _status_response(job_status)


@router.post("/stop", response_model=EmbeddingRunStatus)
async def stop_embedding_run() -> EmbeddingRunStatus:
    """Request a clean stop of the running job at its next batch boundary."""
    if not embedding_job_manager.request_stop():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No embedding run is in progress.",
        )
    return _status_response(embedding_job_manager.get_status())
