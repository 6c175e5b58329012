"""
Template library endpoints.

Route summary
-------------
POST /search          — diagnostic similarity search with explicit threshold/limit.
GET  /popular         — templates ordered by usage_count.
GET  /stats           — library statistics (count, stale, usage).
POST /seed            — insert the starter templates into an empty library.
GET  /{template_id}   — one template with its roadmap structure.
"""
from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Query, status

from waypoint.config import settings
from waypoint.dependencies.services import get_search_service, get_template_library
from waypoint.models.records import UserQueryContext
from waypoint.models.schemas import (
    TemplateDetail,
    TemplateMatchResponse,
    TemplateSearchRequest,
    TemplateSearchResponse,
    TemplateSeedResponse,
    TemplateStatsResponse,
    TemplateSummary,
)
from waypoint.services.similarity_search import SimilaritySearchService
from waypoint.services.template_library import TemplateLibrary

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/search", response_model=TemplateSearchResponse)
async def search_templates(
    body: TemplateSearchRequest,
    search: SimilaritySearchService = Depends(get_search_service),
) -> TemplateSearchResponse:
    """
    Rank stored templates against a learner profile (or a raw query vector).

    ``similarity_threshold = 0`` returns the best ``match_limit`` templates
    regardless of score.  A malformed ``query_vector`` yields 422.
    """
    threshold = (
        body.similarity_threshold
        if body.similarity_threshold is not None
        else settings.SIMILARITY_THRESHOLD
    )
    limit = body.match_limit or settings.MATCH_LIMIT

    t0 = time.perf_counter()
    if body.query_vector is not None:
        matches = await search.search(
            body.query_vector, similarity_threshold=threshold, match_limit=limit
        )
    else:
        context = UserQueryContext(
            goals_text=body.goals_text,
            skills_text=body.skills_text,
            experience_level=body.experience_level,
            time_available=body.time_available,
            profile=body.profile,
        )
        matches = await search.find_similar_templates(
            context, similarity_threshold=threshold, match_limit=limit
        )
    elapsed_ms = round((time.perf_counter() - t0) * 1000, 2)

    return TemplateSearchResponse(
        matches=[
            TemplateMatchResponse(
                template=TemplateSummary.from_record(m.template),
                similarity=round(m.similarity, 6),
            )
            for m in matches
        ],
        total_results=len(matches),
        similarity_threshold=threshold,
        match_limit=limit,
        search_time_ms=elapsed_ms,
    )


@router.get("/popular", response_model=list[TemplateSummary])
async def popular_templates(
    limit: int = Query(10, ge=1, le=100, description="Maximum number of templates"),
    library: TemplateLibrary = Depends(get_template_library),
) -> list[TemplateSummary]:
    """Templates ordered by how often they have been selected."""
    templates = await library.popular_templates(limit)
    return [TemplateSummary.from_record(t) for t in templates]


@router.get("/stats", response_model=TemplateStatsResponse)
async def template_stats(
    library: TemplateLibrary = Depends(get_template_library),
) -> TemplateStatsResponse:
    """Template count, stale-embedding count and usage figures."""
    return TemplateStatsResponse(**(await library.stats()))


@router.post(
    "/seed",
    response_model=TemplateSeedResponse,
    status_code=status.HTTP_200_OK,
)
async def seed_templates(
    library: TemplateLibrary = Depends(get_template_library),
) -> TemplateSeedResponse:
    """Insert the starter templates if the library is empty."""
    inserted = await library.seed_initial_templates()
    message = (
        f"Seeded {inserted} initial template(s)."
        if inserted
        else "Templates already exist; nothing seeded."
    )
    return TemplateSeedResponse(inserted=inserted, message=message)


@router.get("/{template_id}", response_model=TemplateDetail)
async def get_template(
    template_id: str,
    library: TemplateLibrary = Depends(get_template_library),
) -> TemplateDetail:
    """Return one template including its stored roadmap structure."""
    template = await library.get_template(template_id)
    if template is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Template {template_id} not found",
        )
    return TemplateDetail.from_record(template)
