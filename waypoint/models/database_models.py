"""
SQLAlchemy ORM models for the Waypoint database.
Includes pgvector support for content and template embeddings.

Content tables are authored upstream; only the ``content_embedding``,
``embedding_model`` and ``embedded_at`` columns are written by the batch
embedding job.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Float,
    JSON,
)
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector
import uuid

from waypoint.database import Base
from waypoint.config import settings


def _join_search_parts(*parts) -> str:
    """Space-join the non-empty parts, lower-cased, the way content is embedded."""
    flat = []
    for part in parts:
        if isinstance(part, (list, tuple)):
            flat.append(" ".join(str(p) for p in part if p))
        elif part:
            flat.append(str(part))
    return " ".join(p for p in flat if p).lower().strip()


class LearningModule(Base):
    """A unit of study (e.g. "React Basics") that roadmaps are assembled from."""

    __tablename__ = "learning_modules"

    module_id = Column(Integer, primary_key=True, index=True)
    module_name = Column(String(255), nullable=False)
    module_description = Column(Text, nullable=True)
    skills_covered = Column(JSON, nullable=True)  # list of skill names
    prerequisites = Column(JSON, nullable=True)  # list of skill names
    difficulty = Column(String(50), nullable=True)
    estimated_hours = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Embedding (written by the batch job only)
    content_embedding = Column(Vector(settings.VECTOR_DIMENSION), nullable=True)
    embedding_model = Column(String(100), nullable=True)
    embedded_at = Column(DateTime(timezone=True), nullable=True)

    def search_text(self) -> str:
        return _join_search_parts(
            self.module_name,
            self.module_description,
            self.skills_covered or [],
            self.difficulty,
            self.prerequisites or [],
        )


class LearningResource(Base):
    """External learning material (article, video, course) attached to modules."""

    __tablename__ = "learning_resources"

    resource_id = Column(Integer, primary_key=True, index=True)
    resource_title = Column(String(255), nullable=False)
    resource_type = Column(String(50), nullable=True)  # video, article, interactive, ...
    description = Column(Text, nullable=True)
    url = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    content_embedding = Column(Vector(settings.VECTOR_DIMENSION), nullable=True)
    embedding_model = Column(String(100), nullable=True)
    embedded_at = Column(DateTime(timezone=True), nullable=True)

    def search_text(self) -> str:
        return _join_search_parts(self.resource_title, self.description, self.resource_type)


class HandsOnTask(Base):
    """A practical exercise the learner completes."""

    __tablename__ = "hands_on_tasks"

    task_id = Column(Integer, primary_key=True, index=True)
    task_title = Column(String(255), nullable=False)
    task_description = Column(Text, nullable=True)
    task_type = Column(String(50), nullable=True)
    instructions = Column(Text, nullable=True)
    estimated_minutes = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    content_embedding = Column(Vector(settings.VECTOR_DIMENSION), nullable=True)
    embedding_model = Column(String(100), nullable=True)
    embedded_at = Column(DateTime(timezone=True), nullable=True)

    def search_text(self) -> str:
        return _join_search_parts(
            self.task_title, self.task_description, self.task_type, self.instructions
        )


class LearningPathTemplate(Base):
    """A previously generated roadmap, indexed by the embedding of the profile it was built for."""

    __tablename__ = "learning_path_templates"

    template_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    template_name = Column(String(255), nullable=False)
    template_description = Column(Text, nullable=True)
    difficulty_level = Column(String(50), nullable=False, default="beginner")
    estimated_duration_weeks = Column(Integer, nullable=False, default=12)
    target_skills = Column(JSON, nullable=False, default=list)
    target_goals = Column(JSON, nullable=False, default=list)
    usage_count = Column(Integer, nullable=False, default=0, server_default="0")
    path_data = Column(JSON, nullable=False)  # complete roadmap structure
    path_embedding = Column(Vector(settings.VECTOR_DIMENSION), nullable=True)
    embedding_model = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


# content_type → (ORM class, primary-key attribute name)
CONTENT_TYPES = {
    "module": (LearningModule, "module_id"),
    "resource": (LearningResource, "resource_id"),
    "task": (HandsOnTask, "task_id"),
}
