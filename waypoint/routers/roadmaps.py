"""
Roadmap generation endpoint.

POST /generate — retrieve and customize a matching template, or generate a
                 new roadmap and save it as a template.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status

from waypoint.config import settings
from waypoint.dependencies.services import get_orchestrator
from waypoint.models.records import UserQueryContext
from waypoint.models.schemas import RoadmapRequest, RoadmapResponse
from waypoint.services.roadmap_service import RoadmapOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/generate",
    response_model=RoadmapResponse,
    status_code=status.HTTP_200_OK,
    summary="Create a personalized roadmap",
)
async def generate_roadmap(
    body: RoadmapRequest,
    orchestrator: RoadmapOrchestrator = Depends(get_orchestrator),
) -> RoadmapResponse:
    """
    Build a roadmap for the learner described in the body.

    A stored template at least ``similarity_threshold`` similar to the
    learner's profile is customized and returned (``source = "template"``).
    Otherwise a roadmap is generated (``source = "generated"``) and saved as
    a template for future requests.

    ### Errors
    | status | cause                                    |
    |--------|------------------------------------------|
    | 422    | invalid request or malformed query vector |
    | 502    | generation failed                        |
    | 503    | store or embedding service unavailable   |
    | 504    | generation timed out                     |
    """
    context = UserQueryContext(
        goals_text=body.goals_text,
        skills_text=body.skills_text,
        experience_level=body.experience_level,
        time_available=body.time_available,
        profile=body.profile,
        skills=body.skills,
        goals=body.goals,
    )
    threshold = (
        body.similarity_threshold
        if body.similarity_threshold is not None
        else settings.SIMILARITY_THRESHOLD
    )
    limit = body.match_limit or settings.MATCH_LIMIT

    outcome = await orchestrator.create_roadmap(
        context,
        similarity_threshold=threshold,
        match_limit=limit,
        skill_ids=body.skill_ids,
        goal_ids=body.goal_ids,
    )

    return RoadmapResponse(
        roadmap=outcome.roadmap,
        source=outcome.source,
        template_id=outcome.template_id,
        similarity=outcome.similarity,
        saved_template_id=outcome.saved_template_id,
        phases=[p.value for p in outcome.phases],
        processing_time_seconds=outcome.elapsed_seconds,
    )
