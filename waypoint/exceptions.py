"""
Error types raised by the roadmap retrieval and generation pipeline.

Request-time callers see exactly one of these per failed request; the
batch job recovers ItemProcessingError locally and only lets
ConfigurationError escape.
"""
from __future__ import annotations

from typing import Optional


class WaypointError(Exception):
    """Base class for all service errors."""


class ConfigurationError(WaypointError):
    """A required credential or connection string is missing."""


class StoreError(WaypointError):
    """The relational/vector store could not be read or written."""


class EmbeddingError(WaypointError):
    """The embedding service failed or returned an unusable vector."""


class ItemProcessingError(WaypointError):
    """Normalizing, embedding or persisting a single content row failed."""

    def __init__(
        self,
        content_type: str,
        content_id: str,
        reason: str,
        stage: Optional[str] = None,
    ) -> None:
        self.content_type = content_type
        self.content_id = content_id
        self.reason = reason
        self.stage = stage
        where = f" during {stage}" if stage else ""
        super().__init__(f"{content_type} ID {content_id}{where}: {reason}")


class SearchError(WaypointError):
    """
    Similarity search could not run.

    ``malformed_query`` distinguishes a bad query vector (caller error)
    from a store failure (infrastructure error).  Never raised for a
    legitimate zero-match result.
    """

    def __init__(self, message: str, malformed_query: bool = False) -> None:
        self.malformed_query = malformed_query
        super().__init__(message)


class GenerationError(WaypointError):
    """The generation capability failed to produce a roadmap."""


class GenerationTimeoutError(GenerationError):
    """The generation capability did not answer within the timeout."""


class PersistenceWarning(UserWarning):
    """A generated roadmap could not be saved as a template (logged only)."""
