"""
Template library: saving roadmaps as reusable templates, seeding, stats and
stale-embedding maintenance.

A template's vector is the embedding of the *profile text* of the learner it
was built for (see :mod:`waypoint.services.query_builder`), so a later
request with an equivalent profile finds it.  Templates embedded with a model
other than the current one are left out of searches until
:meth:`TemplateLibrary.reembed_stale_templates` refreshes them.
"""
from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from waypoint.exceptions import EmbeddingError, StoreError
from waypoint.models.records import Roadmap, TemplateRecord, UserQueryContext
from waypoint.services.embedding import EmbeddingProvider
from waypoint.services.query_builder import build_profile_text, build_template_text
from waypoint.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

# Title keyword → goal recorded on the template
GOAL_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("full stack", "Full Stack Development"),
    ("frontend", "Frontend Development"),
    ("backend", "Backend Development"),
    ("data science", "Data Science"),
    ("mobile", "Mobile Development"),
)

_SEED_TEMPLATES: List[Dict[str, Any]] = [
    {
        "context": {
            "goals_text": "Frontend Development, React, JavaScript",
            "skills_text": "HTML, CSS",
            "experience_level": "beginner",
        },
        "path_data": {
            "roadmap_title": "Frontend Developer Path",
            "description": "Complete frontend development learning path",
            "overall_difficulty": "beginner",
            "estimated_completion_weeks": 16,
            "modules": [
                {
                    "module_name": "JavaScript Fundamentals",
                    "module_description": "Learn JavaScript basics",
                    "difficulty": "beginner",
                    "estimated_hours": 8,
                    "skills_covered": ["JavaScript", "ES6", "DOM"],
                },
                {
                    "module_name": "React Basics",
                    "module_description": "Introduction to React",
                    "difficulty": "intermediate",
                    "estimated_hours": 12,
                    "skills_covered": ["React", "JSX", "Components"],
                },
            ],
        },
    },
    {
        "context": {
            "goals_text": "Full Stack Development, Node.js, Databases",
            "skills_text": "JavaScript, HTML, CSS",
            "experience_level": "intermediate",
        },
        "path_data": {
            "roadmap_title": "Full Stack Developer Path",
            "description": "Complete full stack development learning path",
            "overall_difficulty": "intermediate",
            "estimated_completion_weeks": 20,
            "modules": [
                {
                    "module_name": "Node.js Backend",
                    "module_description": "Server-side JavaScript",
                    "difficulty": "intermediate",
                    "estimated_hours": 10,
                    "skills_covered": ["Node.js", "Express", "APIs"],
                },
                {
                    "module_name": "Database Design",
                    "module_description": "SQL and database concepts",
                    "difficulty": "intermediate",
                    "estimated_hours": 8,
                    "skills_covered": ["SQL", "PostgreSQL", "Database Design"],
                },
            ],
        },
    },
]


def derive_target_goals(roadmap: Roadmap, context: Optional[UserQueryContext]) -> List[str]:
    """Context goals plus goals implied by keywords in the roadmap title."""
    goals: List[str] = list(context.goal_names) if context else []
    title = roadmap.title.lower()
    goals.extend(goal for keyword, goal in GOAL_KEYWORDS if keyword in title)
    return list(dict.fromkeys(goals))


class TemplateLibrary:
    """Creates and maintains templates in a :class:`VectorStore`."""

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingProvider,
        model: Optional[str] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.model = model or embedder.model

    # ------------------------------------------------------------------
    # Cache population
    # ------------------------------------------------------------------

    async def save_as_template(
        self,
        roadmap: Roadmap,
        context: Optional[UserQueryContext] = None,
        embedding: Optional[List[float]] = None,
    ) -> TemplateRecord:
        """
        Persist *roadmap* as a new template with ``usage_count = 1``.

        *embedding* is the already-computed profile vector of *context*, when
        the caller has one; otherwise the profile text is embedded here.

        Raises:
            EmbeddingError, StoreError: the template could not be saved.
        """
        if context is not None:
            embed_text = build_profile_text(context)
        else:
            embed_text = build_template_text(roadmap)
        if embedding is None:
            embedding = await self.embedder.embed_text(embed_text, model=self.model)

        path_data = copy.deepcopy(roadmap.to_path_data())
        path_data["metadata"]["profile_text"] = embed_text

        template = TemplateRecord(
            template_id=str(uuid.uuid4()),
            name=roadmap.title or "Custom Learning Path",
            description=roadmap.description or "Generated learning path",
            difficulty=roadmap.difficulty or "beginner",
            duration_weeks=roadmap.duration_weeks or 12,
            target_skills=set(roadmap.skills_covered),
            target_goals=set(derive_target_goals(roadmap, context)),
            usage_count=1,
            path_data=path_data,
            path_embedding=list(embedding),
            embedding_model=self.model,
            created_at=datetime.now(timezone.utc),
        )
        stored = await self.store.insert_template(template)
        logger.info("Template saved: %s (%s)", stored.template_id, stored.name)
        return stored

    async def seed_initial_templates(self) -> int:
        """Insert the starter templates when the library is empty; returns how many."""
        existing = await self.store.count_templates()
        if existing > 0:
            logger.info("%d templates already exist, skipping seed", existing)
            return 0

        for seed in _SEED_TEMPLATES:
            context = UserQueryContext(**seed["context"])
            roadmap = Roadmap.from_path_data(copy.deepcopy(seed["path_data"]))
            await self.save_as_template(roadmap, context)

        logger.info("Seeded %d initial templates", len(_SEED_TEMPLATES))
        return len(_SEED_TEMPLATES)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def get_template(self, template_id: str) -> Optional[TemplateRecord]:
        return await self.store.get_template(template_id)

    async def popular_templates(self, limit: int = 10) -> List[TemplateRecord]:
        return await self.store.popular_templates(limit)

    async def stats(self) -> Dict[str, Any]:
        """Template count, stale count, average usage and the most-used template."""
        total = await self.store.count_templates()
        stale = await self.store.stale_templates(self.model)
        templates = await self.store.popular_templates(total) if total else []

        most_used = templates[0] if templates else None
        average = (
            round(sum(t.usage_count for t in templates) / len(templates), 2)
            if templates
            else 0.0
        )
        return {
            "total_templates": total,
            "stale_templates": len(stale),
            "average_usage": average,
            "most_used_template": (
                {
                    "template_id": most_used.template_id,
                    "name": most_used.name,
                    "usage_count": most_used.usage_count,
                }
                if most_used
                else None
            ),
            "embedding_model": self.model,
        }

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def reembed_stale_templates(self) -> Tuple[int, int]:
        """
        Re-embed every template whose vector is missing or from another model.

        Per-template failures are logged and counted.  Returns
        ``(refreshed, failed)``.
        """
        stale = await self.store.stale_templates(self.model)
        if not stale:
            logger.info("No stale template embeddings for %s", self.model)
            return 0, 0

        logger.info("Re-embedding %d stale template(s) with %s", len(stale), self.model)
        refreshed = failed = 0
        for template in stale:
            text = (template.path_data.get("metadata") or {}).get("profile_text")
            if not text:
                text = build_template_text(Roadmap.from_path_data(template.path_data))
            try:
                vector = await self.embedder.embed_text(text, model=self.model)
                if await self.store.update_template_embedding(
                    template.template_id, vector, self.model
                ):
                    refreshed += 1
                else:
                    failed += 1
            except (EmbeddingError, StoreError) as exc:
                failed += 1
                logger.error(
                    "Failed to re-embed template %s: %s", template.template_id, exc
                )
        logger.info("Template re-embedding done: %d refreshed, %d failed", refreshed, failed)
        return refreshed, failed
