"""
Adapt a retrieved template to one learner.

Rules applied to the template's modules, in order:

1. Modules whose skills the learner already claims in full are trimmed.  If
   that would leave nothing, they are kept and marked optional instead.
2. Modules with a partial skill overlap are marked optional; for learners
   past beginner level they are also downgraded to ``beginner`` with one
   hour less (never below one hour).
3. Advanced learners get ``beginner`` modules raised to ``intermediate``.
4. Remaining modules are paced into weeks by the learner's weekly hours.

The template itself is never modified; selecting it bumps its
``usage_count`` in the store.
"""
from __future__ import annotations

import copy
import logging
import math
from typing import List, Optional, Tuple

from waypoint.models.records import Roadmap, RoadmapModule, TemplateMatch, UserQueryContext
from waypoint.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

CUSTOMIZED_SUFFIX = " - Customized"


def _classify(module: RoadmapModule, known: set) -> str:
    skills = {s.lower() for s in module.skills_covered}
    if not skills or not known:
        return "new"
    overlap = skills & known
    if not overlap:
        return "new"
    return "known" if overlap == skills else "partial"


def adjust_modules(
    modules: List[RoadmapModule], context: UserQueryContext
) -> Tuple[List[RoadmapModule], List[str]]:
    """
    Apply the skill/experience rules to *modules* (already copies).

    Returns the adjusted module list and the names of trimmed modules.
    """
    known = context.known_skills
    level = context.experience_level
    classes = [_classify(m, known) for m in modules]

    trim = any(c == "known" for c in classes) and not all(c == "known" for c in classes)
    kept: List[RoadmapModule] = []
    trimmed: List[str] = []

    for module, kind in zip(modules, classes):
        if kind == "known" and trim:
            trimmed.append(module.module_name)
            continue
        if kind in ("known", "partial"):
            module.optional = True
            if level != "beginner":
                module.difficulty = "beginner"
                module.estimated_hours = max(1.0, module.estimated_hours - 1)
        elif level == "advanced" and module.difficulty == "beginner":
            module.difficulty = "intermediate"
        kept.append(module)

    return kept, trimmed


def pace_modules(modules: List[RoadmapModule], hours_per_week: float) -> Optional[int]:
    """
    Assign each module the week it starts in and return the total number of
    weeks, or ``None`` when no weekly budget is known.
    """
    if hours_per_week <= 0:
        return None
    elapsed = 0.0
    for module in modules:
        module.week = int(elapsed // hours_per_week) + 1
        elapsed += module.estimated_hours
    return max(1, math.ceil(elapsed / hours_per_week))


class TemplateCustomizer:
    """Turns a :class:`TemplateMatch` into a roadmap for a specific learner."""

    def __init__(self, store: VectorStore) -> None:
        self.store = store

    async def customize(self, match: TemplateMatch, context: UserQueryContext) -> Roadmap:
        """
        Build the learner's roadmap from *match* and record the selection.

        Always returns a roadmap; only store errors from the usage-count
        update propagate.
        """
        template = match.template
        base = Roadmap.from_path_data(copy.deepcopy(template.path_data))
        if not base.title or base.title == "Custom Learning Path":
            base.title = template.name

        modules, trimmed = adjust_modules(base.modules, context)
        original_weeks = base.duration_weeks or template.duration_weeks
        paced_weeks = pace_modules(modules, context.time_available)
        duration = paced_weeks if paced_weeks is not None else original_weeks

        if paced_weeks is None or paced_weeks == original_weeks:
            pace = "unchanged"
        elif paced_weeks < original_weeks:
            pace = "compressed"
        else:
            pace = "expanded"

        metadata = dict(base.metadata)
        metadata.pop("profile_text", None)
        metadata.update(
            {
                "generation_method": "template_customization",
                "base_template": {
                    "template_id": template.template_id,
                    "template_name": template.name,
                    "similarity_score": round(match.similarity, 4),
                },
                "user_context": {
                    "skills": context.skills_text,
                    "goals": context.goals_text,
                    "experience_level": context.experience_level,
                },
                "customization": {
                    "trimmed_modules": trimmed,
                    "optional_modules": [m.module_name for m in modules if m.optional],
                    "hours_per_week": context.time_available,
                    "original_duration_weeks": original_weeks,
                    "pace": pace,
                },
            }
        )

        roadmap = Roadmap(
            title=f"{base.title}{CUSTOMIZED_SUFFIX}",
            description=base.description or template.description,
            difficulty=base.difficulty,
            duration_weeks=duration,
            modules=modules,
            metadata=metadata,
        )

        usage = await self.store.increment_usage(template.template_id)
        logger.info(
            "Customized template %s (%s): %d modules kept, %d trimmed, %s pace, usage_count=%d",
            template.template_id,
            template.name,
            len(modules),
            len(trimmed),
            pace,
            usage,
        )
        return roadmap
