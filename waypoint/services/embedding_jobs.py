"""
In-memory singleton that tracks the background embedding run started from
the API.

Usage
-----
    from waypoint.services.embedding_jobs import embedding_job_manager

    status = embedding_job_manager.start(job)
    # ... later ...
    current = embedding_job_manager.get_status()
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
from typing import Any, Dict, List, Optional

from waypoint.services.batch_embedding import BatchEmbeddingJob

logger = logging.getLogger(__name__)


class JobPhase(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclasses.dataclass
class JobStatus:
    """Mutable status shared between the running task and pollers."""

    phase: JobPhase = JobPhase.QUEUED
    summary: Optional[Dict[str, Any]] = None
    artifact_path: Optional[str] = None
    errors: List[str] = dataclasses.field(default_factory=list)
    started_at: float = dataclasses.field(default_factory=time.monotonic)
    completed_at: Optional[float] = None
    stop_requested: bool = False

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at if self.completed_at else time.monotonic()
        return round(end - self.started_at, 2)


class EmbeddingJobManager:
    """
    Runs at most one API-triggered batch embedding job per process.

    Overlapping runs started elsewhere (the CLI, another worker) are not
    excluded; the idempotent per-item upsert keeps them harmless.
    """

    _task: Optional[asyncio.Task] = None
    _status: Optional[JobStatus] = None

    @classmethod
    def is_running(cls) -> bool:
        return cls._task is not None and not cls._task.done()

    @classmethod
    def get_status(cls) -> Optional[JobStatus]:
        return cls._status

    @classmethod
    def request_stop(cls) -> bool:
        """Ask the running job to halt at its next batch boundary."""
        if not cls.is_running() or cls._status is None:
            return False
        cls._status.stop_requested = True
        return True

    @classmethod
    def start(cls, job: BatchEmbeddingJob, save_artifact: bool = True) -> JobStatus:
        if cls.is_running():
            raise RuntimeError("An embedding run is already in progress")

        status = JobStatus()
        cls._status = status

        async def _wrapper() -> None:
            status.phase = JobPhase.RUNNING
            try:
                summary = await job.run(should_stop=lambda: status.stop_requested)
                status.summary = summary.to_dict()
                if save_artifact:
                    status.artifact_path = str(job.save_summary(summary))
                status.phase = JobPhase.COMPLETED
            except Exception as exc:
                logger.error("Embedding run failed: %s", exc, exc_info=True)
                status.phase = JobPhase.FAILED
                status.errors.append(f"run crash: {str(exc)[:200]}")
            finally:
                status.completed_at = time.monotonic()

        cls._task = asyncio.create_task(_wrapper())
        logger.info("Background embedding run started")
        return status

    @classmethod
    async def wait(cls) -> None:
        if cls._task is not None:
            await asyncio.gather(cls._task, return_exceptions=True)

    @classmethod
    def reset(cls) -> None:
        cls._task = None
        cls._status = None


# Module-level singleton
embedding_job_manager = EmbeddingJobManager
