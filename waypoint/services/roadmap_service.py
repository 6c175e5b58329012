"""
Request-level roadmap orchestration: retrieve a template or generate.

State machine per request::

    QUERY_BUILT → SEARCHING → HIT  → CUSTOMIZING → DONE
                            → MISS → GENERATING  → DONE
    (any stage) → FATAL_ERROR

Each request yields exactly one outcome, a roadmap or one error.  After a
successful generation the roadmap is saved as a template (inline or in a
background task); a failure there is logged and never reaches the caller.
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
from typing import Dict, FrozenSet, List, Optional, Set

from waypoint.config import settings
from waypoint.exceptions import GenerationTimeoutError, PersistenceWarning
from waypoint.models.records import Roadmap, TemplateRecord, UserQueryContext
from waypoint.services.customization import TemplateCustomizer
from waypoint.services.generation import RoadmapGeneratorProtocol
from waypoint.services.query_builder import build_profile_text
from waypoint.services.similarity_search import SimilaritySearchService
from waypoint.services.template_library import TemplateLibrary

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request phase enum
# ---------------------------------------------------------------------------

class RequestPhase(str, enum.Enum):
    QUERY_BUILT = "query_built"
    SEARCHING = "searching"
    HIT = "hit"
    MISS = "miss"
    CUSTOMIZING = "customizing"
    GENERATING = "generating"
    DONE = "done"
    FATAL_ERROR = "fatal_error"


_TRANSITIONS: Dict[RequestPhase, FrozenSet[RequestPhase]] = {
    RequestPhase.QUERY_BUILT: frozenset({RequestPhase.SEARCHING}),
    RequestPhase.SEARCHING: frozenset({RequestPhase.HIT, RequestPhase.MISS}),
    RequestPhase.HIT: frozenset({RequestPhase.CUSTOMIZING}),
    RequestPhase.MISS: frozenset({RequestPhase.GENERATING}),
    RequestPhase.CUSTOMIZING: frozenset({RequestPhase.DONE}),
    RequestPhase.GENERATING: frozenset({RequestPhase.DONE}),
    RequestPhase.DONE: frozenset(),
    RequestPhase.FATAL_ERROR: frozenset(),
}


@dataclasses.dataclass
class RequestState:
    """Tracks one request through the phases; rejects illegal transitions."""

    phase: RequestPhase = RequestPhase.QUERY_BUILT
    history: List[RequestPhase] = dataclasses.field(
        default_factory=lambda: [RequestPhase.QUERY_BUILT]
    )

    def advance(self, phase: RequestPhase) -> None:
        if phase is RequestPhase.FATAL_ERROR:
            allowed = self.phase not in (RequestPhase.DONE, RequestPhase.FATAL_ERROR)
        else:
            allowed = phase in _TRANSITIONS[self.phase]
        if not allowed:
            raise RuntimeError(f"Illegal request transition {self.phase.value} -> {phase.value}")
        self.phase = phase
        self.history.append(phase)


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class RoadmapOutcome:
    """The single result of a roadmap request."""

    roadmap: Roadmap
    source: str  # "template" | "generated"
    template_id: Optional[str] = None
    similarity: Optional[float] = None
    phases: List[RequestPhase] = dataclasses.field(default_factory=list)
    # Generated roadmaps only: id of the new template when saved inline
    saved_template_id: Optional[str] = None
    elapsed_seconds: float = 0.0


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class RoadmapOrchestrator:
    """
    Runs the retrieve-or-generate flow.

    ``generation_timeout`` bounds the generation call; exceeding it raises
    GenerationTimeoutError.  With ``background_persistence`` the template
    write-back runs as an asyncio task; :meth:`drain` awaits outstanding ones.
    """

    def __init__(
        self,
        search: SimilaritySearchService,
        customizer: TemplateCustomizer,
        generator: RoadmapGeneratorProtocol,
        library: TemplateLibrary,
        *,
        generation_timeout: Optional[float] = None,
        background_persistence: bool = False,
    ) -> None:
        self.search = search
        self.customizer = customizer
        self.generator = generator
        self.library = library
        self.generation_timeout = (
            generation_timeout if generation_timeout is not None else settings.LLM_TIMEOUT
        )
        self.background_persistence = background_persistence
        self._pending: Set[asyncio.Task] = set()

    async def create_roadmap(
        self,
        context: UserQueryContext,
        *,
        similarity_threshold: float,
        match_limit: int,
        skill_ids: Optional[List[str]] = None,
        goal_ids: Optional[List[str]] = None,
    ) -> RoadmapOutcome:
        """
        Produce a roadmap for *context*.

        Raises:
            SearchError / EmbeddingError / StoreError: infrastructure failure.
            GenerationError: generation failed (GenerationTimeoutError on timeout).
        """
        t0 = time.perf_counter()
        state = RequestState()
        logger.debug("Profile text: %s", build_profile_text(context))

        try:
            state.advance(RequestPhase.SEARCHING)
            query_vector = await self.search.embed_context(context)
            matches = await self.search.find_similar_templates(
                context,
                similarity_threshold=similarity_threshold,
                match_limit=match_limit,
                query_vector=query_vector,
            )

            if matches:
                best = matches[0]
                state.advance(RequestPhase.HIT)
                state.advance(RequestPhase.CUSTOMIZING)
                roadmap = await self.customizer.customize(best, context)
                state.advance(RequestPhase.DONE)
                logger.info(
                    "Roadmap served from template %s (similarity %.3f)",
                    best.template.template_id,
                    best.similarity,
                )
                return RoadmapOutcome(
                    roadmap=roadmap,
                    source="template",
                    template_id=best.template.template_id,
                    similarity=best.similarity,
                    phases=list(state.history),
                    elapsed_seconds=round(time.perf_counter() - t0, 3),
                )

            state.advance(RequestPhase.MISS)
            state.advance(RequestPhase.GENERATING)
            logger.info(
                "No template above %.2f, generating a new roadmap", similarity_threshold
            )
            roadmap = await self._generate(context, skill_ids, goal_ids)
            state.advance(RequestPhase.DONE)
        except Exception:
            state.advance(RequestPhase.FATAL_ERROR)
            logger.error(
                "Roadmap request failed after phases %s",
                [p.value for p in state.history],
            )
            raise

        outcome = RoadmapOutcome(
            roadmap=roadmap,
            source="generated",
            phases=list(state.history),
        )
        if self.background_persistence:
            task = asyncio.create_task(self._populate_cache(roadmap, context, query_vector))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            saved = await self._populate_cache(roadmap, context, query_vector)
            outcome.saved_template_id = saved.template_id if saved else None

        outcome.elapsed_seconds = round(time.perf_counter() - t0, 3)
        return outcome

    async def drain(self) -> None:
        """Wait for background template write-backs to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _generate(
        self,
        context: UserQueryContext,
        skill_ids: Optional[List[str]],
        goal_ids: Optional[List[str]],
    ) -> Roadmap:
        try:
            return await asyncio.wait_for(
                self.generator.generate(context, skill_ids, goal_ids),
                timeout=self.generation_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise GenerationTimeoutError(
                f"Generation did not finish within {self.generation_timeout:.0f}s"
            ) from exc

    async def _populate_cache(
        self,
        roadmap: Roadmap,
        context: UserQueryContext,
        query_vector: List[float],
    ) -> Optional[TemplateRecord]:
        """Save *roadmap* as a template. Failures are logged, never raised."""
        try:
            return await self.library.save_as_template(roadmap, context, embedding=query_vector)
        except Exception as exc:
            warning = PersistenceWarning(f"Generated roadmap not saved as template: {exc}")
            logger.warning("%s: %s", type(warning).__name__, warning, exc_info=True)
            return None
