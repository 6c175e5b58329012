"""Database models, pipeline records and API schemas for Waypoint."""
from waypoint.models.database_models import (
    LearningModule,
    LearningResource,
    HandsOnTask,
    LearningPathTemplate,
)
from waypoint.models.records import (
    ContentItem,
    CoverageStats,
    TemplateRecord,
    TemplateMatch,
    UserQueryContext,
    RoadmapModule,
    Roadmap,
    RunSummary,
)
from waypoint.models.schemas import (
    RoadmapRequest,
    RoadmapResponse,
    TemplateSummary,
    TemplateDetail,
    TemplateSearchRequest,
    TemplateSearchResponse,
    CoverageResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "LearningModule",
    "LearningResource",
    "HandsOnTask",
    "LearningPathTemplate",
    # Pipeline records
    "ContentItem",
    "CoverageStats",
    "TemplateRecord",
    "TemplateMatch",
    "UserQueryContext",
    "RoadmapModule",
    "Roadmap",
    "RunSummary",
    # Pydantic schemas
    "RoadmapRequest",
    "RoadmapResponse",
    "TemplateSummary",
    "TemplateDetail",
    "TemplateSearchRequest",
    "TemplateSearchResponse",
    "CoverageResponse",
    "HealthCheckResponse",
]
