"""
Roadmap generation via an OpenAI-compatible ``/chat/completions`` API.

Used only on a template cache miss.  The model is asked for a JSON roadmap;
its output is parsed leniently (code fences, trailing commas, surrounding
prose) and modules teaching skills the learner already has are dropped.

Public API
----------
RoadmapGenerator.generate(context, skill_ids, goal_ids) -> Roadmap
remove_redundant_modules(path_data, known_skills)      -> (path_data, removed)
parse_json_robust(text)                                 -> (ok, value)
"""
from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Tuple

import httpx
from pydantic import ValidationError

from waypoint.config import settings
from waypoint.exceptions import GenerationError, GenerationTimeoutError
from waypoint.models.records import Roadmap, UserQueryContext

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You create personalized, structured learning roadmaps for people learning \
software development.

Build a sequence of learning modules organized into logical phases, with a \
realistic timeline based on the learner's weekly hours. Skip topics the \
learner already knows: if they already know HTML and CSS, do not include \
beginner modules for those skills.

Respond ONLY with a JSON object of this shape:
{
  "roadmap_title": "Title based on the learner's goals",
  "description": "One or two sentences",
  "overall_difficulty": "beginner|intermediate|advanced",
  "estimated_completion_weeks": 12,
  "phases": [
    {
      "phase_title": "Phase title",
      "phase_description": "Phase description",
      "modules": [
        {
          "module_name": "Module name",
          "module_description": "Module description",
          "estimated_hours": 6,
          "difficulty": "beginner|intermediate|advanced",
          "skills_covered": ["Skill"],
          "prerequisites": ["Skill"],
          "resources": [{"resource_title": "...", "resource_type": "video|article|documentation|tutorial|interactive"}],
          "tasks": [{"task_title": "...", "task_description": "...", "task_type": "practice|project|quiz"}]
        }
      ]
    }
  ]
}\
"""

_USER_PROMPT = """\
Learner profile:
- Learning goals: {goals}
- Current skills: {skills}
- Experience level: {experience_level}
- Career stage: {career_stage}
- Weekly learning time: {hours} hours
- Selected skill identifiers: {skill_ids}
- Selected goal identifiers: {goal_ids}

Create the roadmap.\
"""


class RoadmapGeneratorProtocol(Protocol):
    """Anything that can produce a roadmap for a learner."""

    async def generate(
        self,
        context: UserQueryContext,
        skill_ids: Optional[List[str]] = None,
        goal_ids: Optional[List[str]] = None,
    ) -> Roadmap:
        ...


# ---------------------------------------------------------------------------
# Redundant module removal
# ---------------------------------------------------------------------------

def remove_redundant_modules(
    path_data: Dict[str, Any], known_skills: Iterable[str]
) -> Tuple[Dict[str, Any], int]:
    """
    Drop modules whose ``skills_covered`` include any skill in *known_skills*,
    from both the flat ``modules`` list and every ``phases[].modules`` list.

    Returns a new structure and the number of modules removed.
    """
    known: Set[str] = {s.strip().lower() for s in known_skills if s and s.strip()}
    data = dict(path_data)
    if not known:
        return data, 0

    def redundant(module: Any) -> bool:
        if not isinstance(module, dict):
            return False
        skills = module.get("skills_covered") or []
        if isinstance(skills, str):
            skills = skills.split(",")
        return any(str(s).strip().lower() in known for s in skills)

    removed = 0
    if isinstance(data.get("modules"), list):
        kept = [m for m in data["modules"] if not redundant(m)]
        removed += len(data["modules"]) - len(kept)
        data["modules"] = kept

    if isinstance(data.get("phases"), list):
        phases = []
        for phase in data["phases"]:
            if isinstance(phase, dict) and isinstance(phase.get("modules"), list):
                kept = [m for m in phase["modules"] if not redundant(m)]
                removed += len(phase["modules"]) - len(kept)
                phase = {**phase, "modules": kept}
            phases.append(phase)
        data["phases"] = phases

    if removed:
        logger.info("Removed %d redundant module(s) covering known skills", removed)
    return data, removed


# ---------------------------------------------------------------------------
# Robust JSON parsing
# ---------------------------------------------------------------------------

def parse_json_robust(response: str) -> Tuple[bool, Any]:
    """
    Try multiple strategies to parse JSON from potentially messy LLM output.

    Handles:
    - Markdown code fences (```json … ```, ``` … ```)
    - Trailing commas before ] or }
    - Python-style True / False / None
    - Surrounding prose — finds the first balanced {...} block
    - Missing closing brace (adds one and retries)

    Returns ``(success, parsed_value)``.
    """
    if not response:
        return False, None

    text = response.strip()

    ok, val = _try_json(text)
    if ok:
        return True, val

    stripped = _strip_code_fences(text)
    if stripped != text:
        ok, val = _try_json(stripped)
        if ok:
            return True, val
        text = stripped

    fixed = _fix_json_issues(text)
    ok, val = _try_json(fixed)
    if ok:
        return True, val

    fragment = _extract_json_structure(text, "{", "}")
    if fragment:
        ok, val = _try_json(fragment)
        if ok:
            return True, val
        ok, val = _try_json(_fix_json_issues(fragment))
        if ok:
            return True, val

    for suffix in ("}", "]}", "}]}"):
        ok, val = _try_json(fixed + suffix)
        if ok:
            logger.debug("parse_json_robust: recovered with suffix %r", suffix)
            return True, val

    logger.warning("parse_json_robust: all strategies failed. Preview: %s", response[:400])
    return False, None


def _try_json(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


def _strip_code_fences(text: str) -> str:
    text = re.sub(r"^```(?:json|javascript|text)?\s*\n?", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\n?```\s*$", "", text)
    return text.strip()


def _fix_json_issues(text: str) -> str:
    text = re.sub(r",(\s*[}\]])", r"\1", text)
    text = re.sub(r"\bTrue\b", "true", text)
    text = re.sub(r"\bFalse\b", "false", text)
    text = re.sub(r"\bNone\b", "null", text)
    text = re.sub(r"(?<!:)//[^\n]*", "", text)
    return text.strip()


def _extract_json_structure(text: str, open_b: str, close_b: str) -> str:
    """First complete balanced open_b … close_b fragment of *text*, or ``""``."""
    start = text.find(open_b)
    if start == -1:
        return ""

    depth = 0
    in_string = False
    escape_next = False

    for i, ch in enumerate(text[start:], start=start):
        if escape_next:
            escape_next = False
            continue
        if ch == "\\" and in_string:
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_b:
            depth += 1
        elif ch == close_b:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return ""


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class RoadmapGenerator:
    """
    Chat-completions client producing :class:`Roadmap` objects.

    Errors are never swallowed: a timeout raises GenerationTimeoutError,
    everything else (HTTP error, empty or unparseable output) raises
    GenerationError.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.model = model or settings.LLM_MODEL
        self.timeout_seconds = float(timeout or settings.LLM_TIMEOUT)
        self.timeout = httpx.Timeout(self.timeout_seconds, connect=10.0)
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.LLM_MAX_TOKENS
        self._transport = transport

    async def generate(
        self,
        context: UserQueryContext,
        skill_ids: Optional[List[str]] = None,
        goal_ids: Optional[List[str]] = None,
    ) -> Roadmap:
        """Generate a fresh roadmap for *context*."""
        prompt = _USER_PROMPT.format(
            goals=context.goals_text or ", ".join(context.goal_names) or "not specified",
            skills=context.skills_text or ", ".join(context.skills) or "none",
            experience_level=context.experience_level,
            career_stage=context.profile.get("career_stage") or "student",
            hours=f"{context.time_available:g}",
            skill_ids=", ".join(skill_ids or []) or "none",
            goal_ids=", ".join(goal_ids or []) or "none",
        )

        content = await self._call_llm(_SYSTEM_PROMPT, prompt)
        ok, parsed = parse_json_robust(content)
        if not ok or not isinstance(parsed, dict):
            raise GenerationError("Generation service returned an unparseable roadmap")

        try:
            cleaned, removed = remove_redundant_modules(parsed, context.known_skills)
            roadmap = Roadmap.from_path_data(cleaned)
        except (ValidationError, ValueError, TypeError) as exc:
            logger.error("Generated roadmap failed validation: %s", exc)
            raise GenerationError(f"Generation service returned an invalid roadmap: {exc}") from exc
        roadmap.metadata["generation_method"] = "custom"
        roadmap.metadata["generated_by"] = self.model
        if removed:
            roadmap.metadata["redundant_modules_removed"] = removed

        logger.info(
            "Generated roadmap %r: %d modules, %d weeks", roadmap.title, len(roadmap.modules), roadmap.duration_weeks
        )
        return roadmap

    async def _call_llm(self, system_prompt: str, user_prompt: str) -> str:
        """POST a JSON-mode chat completion and return the message content."""
        if not self.api_key:
            raise GenerationError("LLM_API_KEY is not configured")

        t0 = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self.api_key}"},
            ) as client:
                resp = await client.post(
                    f"{self.base_url}/chat/completions",
                    json={
                        "model": self.model,
                        "messages": [
                            {"role": "system", "content": system_prompt},
                            {"role": "user", "content": user_prompt},
                        ],
                        "response_format": {"type": "json_object"},
                        "temperature": self.temperature,
                        "max_tokens": self.max_tokens,
                    },
                )
        except httpx.TimeoutException as exc:
            logger.error("Generation request timed out after %.0f s", self.timeout_seconds)
            raise GenerationTimeoutError(
                f"Generation timed out after {self.timeout_seconds:.0f}s"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Generation request failed: %s", exc)
            raise GenerationError(f"Generation request failed: {exc}") from exc

        if resp.status_code != 200:
            logger.error(
                "/chat/completions returned HTTP %d: %s", resp.status_code, resp.text[:300]
            )
            raise GenerationError(f"Generation service returned HTTP {resp.status_code}")

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise GenerationError(f"Malformed generation response: {exc}") from exc

        logger.debug(
            "Generation took %.1f ms (%d chars)", (time.perf_counter() - t0) * 1000, len(content or "")
        )
        if not content:
            raise GenerationError("Generation service returned an empty response")
        return content
