"""
Validated records passed between the store, the retrieval pipeline and the
generation fallback.

Rows coming back from the store are converted into these records at the
boundary so that required fields are checked once, instead of threading
loosely-typed dictionaries through the pipeline.
"""
from __future__ import annotations

import dataclasses
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

class ContentItem(BaseModel):
    """A row of upstream-authored content that may need an embedding."""

    content_type: str = Field(..., min_length=1)
    content_id: str = Field(..., min_length=1)
    text_content: str = ""
    last_updated: Optional[datetime] = None
    embedding: Optional[List[float]] = None
    embedding_model: Optional[str] = None

    @field_validator("content_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        # Integer primary keys are carried as strings
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("text_content", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


@dataclasses.dataclass
class CoverageStats:
    """Embedding coverage for one content type."""

    content_type: str
    total_items: int
    items_with_embeddings: int
    latest_embedding_date: Optional[datetime] = None

    @property
    def coverage_percentage(self) -> float:
        if self.total_items == 0:
            return 0.0
        return round(self.items_with_embeddings / self.total_items * 100, 1)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

class TemplateRecord(BaseModel):
    """A reusable roadmap template."""

    template_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    difficulty: str = "beginner"
    duration_weeks: int = Field(12, ge=0)
    target_skills: Set[str] = Field(default_factory=set)
    target_goals: Set[str] = Field(default_factory=set)
    usage_count: int = Field(0, ge=0)
    path_data: Dict[str, Any] = Field(default_factory=dict)
    path_embedding: Optional[List[float]] = None
    embedding_model: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("template_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("target_skills", "target_goals", mode="before")
    @classmethod
    def _none_to_set(cls, value: Any) -> Any:
        return set() if value is None else value

    @field_validator("path_embedding", mode="before")
    @classmethod
    def _vector_to_list(cls, value: Any) -> Any:
        # pgvector hands back numpy arrays
        if value is None or isinstance(value, list):
            return value
        return [float(v) for v in value]

    @field_validator("description", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    def has_embedding_for(self, model: str, dimension: int) -> bool:
        """True when the stored vector is usable for a search with *model*."""
        return (
            self.path_embedding is not None
            and len(self.path_embedding) == dimension
            and self.embedding_model == model
        )


@dataclasses.dataclass
class TemplateMatch:
    """A template returned by similarity search together with its score."""

    template: TemplateRecord
    similarity: float


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------

class UserQueryContext(BaseModel):
    """Request-scoped description of the learner. Never persisted."""

    goals_text: str = ""
    skills_text: str = ""
    experience_level: str = "beginner"
    time_available: float = Field(5.0, ge=0, description="Hours per week")
    profile: Dict[str, Any] = Field(default_factory=dict)
    skills: List[str] = Field(default_factory=list)
    goals: List[str] = Field(default_factory=list)

    @field_validator("experience_level", mode="before")
    @classmethod
    def _lower_level(cls, value: Any) -> Any:
        if value is None:
            return "beginner"
        return str(value).strip().lower() or "beginner"

    @property
    def known_skills(self) -> Set[str]:
        """Lower-cased skill names the learner already claims."""
        names = self.skills or [s for s in self.skills_text.split(",")]
        return {n.strip().lower() for n in names if n and n.strip()}

    @property
    def goal_names(self) -> List[str]:
        if self.goals:
            return [g.strip() for g in self.goals if g and g.strip()]
        return [g.strip() for g in self.goals_text.split(",") if g.strip()]


# ---------------------------------------------------------------------------
# Roadmaps
# ---------------------------------------------------------------------------

class RoadmapModule(BaseModel):
    """One module of a roadmap. Unknown keys from the generator are kept."""

    model_config = ConfigDict(extra="allow")

    module_name: str = "Untitled module"
    module_description: str = ""
    difficulty: str = "beginner"
    estimated_hours: float = Field(3.0, ge=0)
    skills_covered: List[str] = Field(default_factory=list)
    optional: bool = False
    phase: Optional[str] = None
    week: Optional[int] = None

    @field_validator("module_name", mode="before")
    @classmethod
    def _name_alias(cls, value: Any) -> Any:
        return value or "Untitled module"

    @field_validator("difficulty", mode="before")
    @classmethod
    def _difficulty_label(cls, value: Any) -> Any:
        # Generators sometimes rate difficulty 1-5 instead of naming it
        if value is None or value == "":
            return "beginner"
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if value <= 2:
                return "beginner"
            return "intermediate" if value <= 3 else "advanced"
        return str(value).strip().lower()

    @field_validator("estimated_hours", mode="before")
    @classmethod
    def _hours(cls, value: Any) -> Any:
        if value is None:
            return 3.0
        try:
            hours = float(value)
        except (TypeError, ValueError):
            return 3.0
        return hours if math.isfinite(hours) and hours >= 0 else 3.0

    @field_validator("skills_covered", mode="before")
    @classmethod
    def _skills(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [s.strip() for s in value.split(",") if s.strip()]
        return [str(s) for s in value if s]


class Roadmap(BaseModel):
    """A learning roadmap: title, ordered modules and free-form metadata."""

    title: str = "Custom Learning Path"
    description: str = ""
    difficulty: str = "beginner"
    duration_weeks: int = Field(12, ge=0)
    modules: List[RoadmapModule] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_path_data(cls, data: Dict[str, Any]) -> "Roadmap":
        """
        Build a roadmap from the stored/generated JSON structure.

        Accepts a flat ``modules`` list, nested ``phases[].modules`` (which are
        flattened in order, keeping the phase title on each module), or both.
        """
        data = dict(data or {})
        modules: List[Dict[str, Any]] = []
        for raw in data.get("modules") or []:
            if isinstance(raw, dict):
                modules.append(_module_aliases(raw))
        for phase in data.get("phases") or []:
            if not isinstance(phase, dict):
                continue
            phase_title = phase.get("phase_title") or phase.get("title")
            for raw in phase.get("modules") or []:
                if isinstance(raw, dict):
                    mod = _module_aliases(raw)
                    mod.setdefault("phase", phase_title)
                    modules.append(mod)

        known = {
            "roadmap_title", "title", "description", "overall_difficulty",
            "difficulty", "estimated_completion_weeks", "estimated_duration_weeks",
            "duration_weeks", "modules", "phases", "metadata",
        }
        metadata = dict(data.get("metadata") or {})
        metadata.update({k: v for k, v in data.items() if k not in known})

        weeks = next(
            (
                data[key]
                for key in ("estimated_completion_weeks", "estimated_duration_weeks", "duration_weeks")
                if data.get(key) is not None
            ),
            12,
        )
        try:
            weeks = max(0, int(weeks))
        except (TypeError, ValueError):
            weeks = 12

        return cls(
            title=data.get("roadmap_title") or data.get("title") or "Custom Learning Path",
            description=data.get("description") or "",
            difficulty=str(
                data.get("overall_difficulty") or data.get("difficulty") or "beginner"
            ).lower(),
            duration_weeks=weeks,
            modules=modules,
            metadata=metadata,
        )

    def to_path_data(self) -> Dict[str, Any]:
        """Serialize into the structure stored in ``learning_path_templates.path_data``."""
        return {
            "roadmap_title": self.title,
            "description": self.description,
            "overall_difficulty": self.difficulty,
            "estimated_completion_weeks": self.duration_weeks,
            "modules": [m.model_dump(mode="json", exclude_none=True) for m in self.modules],
            "metadata": self.metadata,
        }

    @property
    def total_hours(self) -> float:
        return sum(m.estimated_hours for m in self.modules)

    @property
    def skills_covered(self) -> List[str]:
        """Distinct skills taught, in first-seen order."""
        seen: Dict[str, str] = {}
        for module in self.modules:
            for skill in module.skills_covered:
                seen.setdefault(skill.lower(), skill)
        return list(seen.values())


def _module_aliases(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map the alternative key names generators use onto RoadmapModule fields."""
    mod = dict(raw)
    if "module_name" not in mod and "name" in mod:
        mod["module_name"] = mod.pop("name")
    if "module_description" not in mod and "description" in mod:
        mod["module_description"] = mod.pop("description")
    return mod


# ---------------------------------------------------------------------------
# Batch job summary
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class RunSummary:
    """Outcome of one batch embedding run; persisted as a JSON artifact."""

    total: int
    success: int
    failed: int
    duration_seconds: float
    estimated_cost: float
    estimated_tokens: int
    model: str
    start_time: str
    end_time: str
    batch_sizes: List[int] = dataclasses.field(default_factory=list)
    stopped_early: bool = False
    errors: List[str] = dataclasses.field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.success / self.total * 100, 1)

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["success_rate"] = self.success_rate
        return data
