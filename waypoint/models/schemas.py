"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from waypoint.models.records import Roadmap, TemplateRecord


# Roadmap Schemas
class RoadmapRequest(BaseModel):
    """Schema for requesting a personalized roadmap."""

    goals_text: str = Field("", description="Comma-separated learning goals")
    skills_text: str = Field("", description="Comma-separated current skills")
    experience_level: str = "beginner"
    time_available: float = Field(5.0, ge=0, description="Hours per week")
    profile: Dict[str, Any] = Field(default_factory=dict)
    skills: List[str] = Field(default_factory=list)
    goals: List[str] = Field(default_factory=list)
    skill_ids: List[str] = Field(default_factory=list)
    goal_ids: List[str] = Field(default_factory=list)
    similarity_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    match_limit: Optional[int] = Field(None, ge=1, le=50)


class RoadmapResponse(BaseModel):
    """Schema for a generated or customized roadmap."""

    roadmap: Roadmap
    source: str
    template_id: Optional[str] = None
    similarity: Optional[float] = None
    saved_template_id: Optional[str] = None
    phases: List[str]
    processing_time_seconds: float


# Template Schemas
class TemplateSummary(BaseModel):
    """Template fields without the stored vector."""

    template_id: str
    name: str
    description: str
    difficulty: str
    duration_weeks: int
    target_skills: List[str]
    target_goals: List[str]
    usage_count: int
    embedding_model: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: TemplateRecord) -> "TemplateSummary":
        return cls(
            template_id=record.template_id,
            name=record.name,
            description=record.description,
            difficulty=record.difficulty,
            duration_weeks=record.duration_weeks,
            target_skills=sorted(record.target_skills),
            target_goals=sorted(record.target_goals),
            usage_count=record.usage_count,
            embedding_model=record.embedding_model,
            created_at=record.created_at,
        )


class TemplateDetail(TemplateSummary):
    """Template fields plus the stored roadmap structure."""

    path_data: Dict[str, Any]

    @classmethod
    def from_record(cls, record: TemplateRecord) -> "TemplateDetail":
        summary = TemplateSummary.from_record(record)
        return cls(**summary.model_dump(), path_data=record.path_data)


class TemplateSearchRequest(BaseModel):
    """Schema for a diagnostic template search."""

    goals_text: str = ""
    skills_text: str = ""
    experience_level: str = "beginner"
    time_available: float = Field(5.0, ge=0)
    profile: Dict[str, Any] = Field(default_factory=dict)
    query_vector: Optional[List[float]] = Field(
        None, description="Search with this vector instead of embedding the profile"
    )
    similarity_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    match_limit: Optional[int] = Field(None, ge=1, le=50)


class TemplateMatchResponse(BaseModel):
    """A template with its similarity score."""

    template: TemplateSummary
    similarity: float


class TemplateSearchResponse(BaseModel):
    """Schema for template search results."""

    matches: List[TemplateMatchResponse]
    total_results: int
    similarity_threshold: float
    match_limit: int
    search_time_ms: float


class TemplateSeedResponse(BaseModel):
    """Schema for the seed endpoint."""

    inserted: int
    message: str


class TemplateStatsResponse(BaseModel):
    """Schema for template library statistics."""

    total_templates: int
    stale_templates: int
    average_usage: float
    most_used_template: Optional[Dict[str, Any]] = None
    embedding_model: str


# Embedding Schemas
class CoverageEntry(BaseModel):
    """Embedding coverage for one content type."""

    content_type: str
    total_items: int
    items_with_embeddings: int
    coverage_percentage: float
    latest_embedding_date: Optional[datetime] = None


class CoverageResponse(BaseModel):
    """Schema for the coverage view."""

    model: str
    content_types: List[CoverageEntry]


class EmbeddingRunRequest(BaseModel):
    """Overrides for an API-triggered embedding run."""

    batch_size: Optional[int] = Field(None, ge=1, le=500)
    item_delay: Optional[float] = Field(None, ge=0)
    batch_delay: Optional[float] = Field(None, ge=0)
    model: Optional[str] = None


class EmbeddingRunStatus(BaseModel):
    """Status of the background embedding run."""

    phase: str
    elapsed_seconds: float
    stop_requested: bool = False
    summary: Optional[Dict[str, Any]] = None
    artifact_path: Optional[str] = None
    errors: List[str] = Field(default_factory=list)


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str
    database: str
    embedding_service: str
    templates_count: Optional[int] = None
    timestamp: datetime
