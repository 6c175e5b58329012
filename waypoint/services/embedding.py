"""
Embedding generation via an OpenAI-compatible ``/embeddings`` API.

Provides:
- EmbeddingClient: retrying, caching, dimension-checking text → vector client
- EmbeddingProvider: the protocol every embedder (real or fake) satisfies
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import OrderedDict
from typing import List, Optional, Protocol, Tuple

import httpx

from waypoint.config import settings
from waypoint.exceptions import ConfigurationError, EmbeddingError
from waypoint.utils.helpers import generate_hash

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Anything that turns text into a fixed-length vector."""

    model: str
    dimension: int

    async def embed_text(self, text: str, model: Optional[str] = None) -> List[float]:
        ...


# ---------------------------------------------------------------------------
# Pure vector helpers
# ---------------------------------------------------------------------------

def _normalize(vector: List[float]) -> List[float]:
    """Return a unit-length copy of *vector* (cosine scores are unaffected)."""
    magnitude = math.sqrt(sum(x * x for x in vector))
    if magnitude == 0.0:
        return vector
    return [x / magnitude for x in vector]


# ---------------------------------------------------------------------------
# Main client class
# ---------------------------------------------------------------------------

class EmbeddingClient:
    """
    Embedding generation with production-quality safeguards:

    * Exponential-backoff retries on connection errors, timeouts, 429 and 5xx
    * Hard failure on other 4xx responses and on dimension mismatch
    * Unit-length normalization before storage
    * Bounded in-process LRU cache keyed by (model, content hash)
    """

    MAX_RETRIES: int = 3
    RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        dimension: Optional[int] = None,
        timeout: Optional[float] = None,
        backoff_base: float = 1.0,
        cache_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.EMBEDDING_API_KEY
        if not self.api_key:
            raise ConfigurationError("EMBEDDING_API_KEY environment variable is required")
        self.base_url = (base_url or settings.EMBEDDING_BASE_URL).rstrip("/")
        self.model = model or settings.EMBEDDING_MODEL
        self.dimension = dimension or settings.VECTOR_DIMENSION
        self.timeout = httpx.Timeout(timeout or settings.EMBEDDING_TIMEOUT, connect=10.0)
        self.backoff_base = backoff_base
        self._transport = transport
        self.cache_size = settings.EMBEDDING_CACHE_SIZE if cache_size is None else cache_size
        self._cache: "OrderedDict[Tuple[str, str], List[float]]" = OrderedDict()

    # ------------------------------------------------------------------
    # Primary API
    # ------------------------------------------------------------------

    async def embed_text(self, text: str, model: Optional[str] = None) -> List[float]:
        """
        Embed a single text string with *model* (defaults to the client model).

        Returns a normalized (unit-length) vector.  The most recent results
        are cached by SHA-256 of the stripped input text, up to ``cache_size``
        vectors.

        Raises:
            EmbeddingError: on empty input or after all attempts fail.
        """
        if not text or not text.strip():
            raise EmbeddingError("Text for embedding cannot be empty")

        model = model or self.model
        text = text.strip()
        key = (model, generate_hash(text))
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        embedding = await self._call_with_retry(text, model)
        self._remember(key, embedding)
        return embedding

    def _remember(self, key: Tuple[str, str], embedding: List[float]) -> None:
        if self.cache_size <= 0:
            return
        self._cache[key] = embedding
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    async def check_health(self) -> bool:
        """Return ``True`` if the embedding endpoint answers a tiny request."""
        try:
            await self._call_with_retry("health check", self.model, max_attempts=1)
            return True
        except EmbeddingError as exc:
            logger.error("Embedding service health check failed: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    async def _backoff(self, attempt: int, max_attempts: int) -> None:
        if attempt < max_attempts and self.backoff_base > 0:
            await asyncio.sleep(self.backoff_base * 2 ** (attempt - 1))

    async def _call_with_retry(
        self,
        text: str,
        model: str,
        max_attempts: Optional[int] = None,
    ) -> List[float]:
        """
        POST to ``/embeddings`` with up to MAX_RETRIES attempts.
        Exponential backoff on transient errors.
        """
        max_attempts = max_attempts or self.MAX_RETRIES
        last_error = "no attempt made"

        for attempt in range(1, max_attempts + 1):
            try:
                t0 = time.perf_counter()
                async with self._client() as client:
                    resp = await client.post(
                        f"{self.base_url}/embeddings",
                        json={"model": model, "input": text, "encoding_format": "float"},
                    )
                elapsed_ms = (time.perf_counter() - t0) * 1000
            except httpx.TimeoutException as exc:
                last_error = f"timeout: {exc}"
                logger.warning(
                    "Embedding timeout (attempt %d/%d): %s", attempt, max_attempts, exc
                )
                await self._backoff(attempt, max_attempts)
                continue
            except httpx.TransportError as exc:
                last_error = f"connection error: {exc}"
                logger.warning(
                    "Embedding connect error (attempt %d/%d): %s", attempt, max_attempts, exc
                )
                await self._backoff(attempt, max_attempts)
                continue

            if resp.status_code != 200:
                last_error = f"HTTP {resp.status_code}: {resp.text[:300]}"
                logger.error(
                    "/embeddings returned %d (attempt %d/%d): %s",
                    resp.status_code,
                    attempt,
                    max_attempts,
                    resp.text[:300],
                )
                if resp.status_code not in self.RETRYABLE_STATUS:
                    break
                await self._backoff(attempt, max_attempts)
                continue

            try:
                raw = resp.json()["data"][0]["embedding"]
            except (ValueError, KeyError, IndexError, TypeError) as exc:
                raise EmbeddingError(f"Malformed embedding response: {exc}") from exc

            if len(raw) != self.dimension:
                # Wrong dimension is not retried
                raise EmbeddingError(
                    f"Dimension mismatch: expected {self.dimension}, got {len(raw)}"
                )

            logger.debug(
                "Embedded %d chars → %d-dim in %.1f ms", len(text), self.dimension, elapsed_ms
            )
            return _normalize([float(x) for x in raw])

        raise EmbeddingError(
            f"All embedding attempts failed for text (length={len(text)}): {last_error}"
        )
