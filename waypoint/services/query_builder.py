"""
Canonical text for embedding a learner profile or a roadmap template.

The same profile text is embedded both when a request searches for a
template and when a generated roadmap is saved as one, so equivalent
requests land on the same vector.
"""
from typing import List, Optional

from waypoint.models.records import Roadmap, UserQueryContext


def _hours(value: float) -> str:
    return f"{value:g}"


def build_profile_text(context: UserQueryContext) -> str:
    """
    Render *context* as a sentence list, e.g.::

        Learning goals: Frontend Development. Current skills: HTML, CSS.
        Experience level: beginner. Career stage: student.
        Weekly time available: 5 hours. Focus areas: Frontend Development

    Goals are repeated as "Focus areas" to weight them in the embedding.
    """
    goals = context.goals_text.strip() or ", ".join(context.goal_names)
    skills = context.skills_text.strip() or ", ".join(context.skills)
    career_stage = context.profile.get("career_stage") or "student"

    parts = [
        f"Learning goals: {goals}",
        f"Current skills: {skills}",
        f"Experience level: {context.experience_level}",
        f"Career stage: {career_stage}",
        f"Weekly time available: {_hours(context.time_available)} hours",
        f"Focus areas: {goals}",
    ]
    return ". ".join(parts)


def build_template_text(roadmap: Roadmap, context: Optional[UserQueryContext] = None) -> str:
    """Describe a roadmap (title, difficulty, skills, modules) for embedding."""
    goals = context.goals_text.strip() if context else ""
    parts: List[str] = [
        f"Learning path: {roadmap.title}",
        f"Description: {roadmap.description}",
        f"Difficulty: {roadmap.difficulty}",
        f"Duration: {roadmap.duration_weeks} weeks",
        f"Target goals: {goals or 'General software development'}",
        f"Skills taught: {', '.join(roadmap.skills_covered)}",
    ]
    if roadmap.modules:
        parts.append("Modules: " + ", ".join(m.module_name for m in roadmap.modules))
    return ". ".join(parts)
