"""Tests for the chat-completions roadmap generator."""
import json

import httpx
import pytest

from waypoint.exceptions import GenerationError, GenerationTimeoutError
from waypoint.models.records import UserQueryContext
from waypoint.services.generation import (
    RoadmapGenerator,
    parse_json_robust,
    remove_redundant_modules,
)

ROADMAP_JSON = {
    "roadmap_title": "Frontend Developer Roadmap",
    "description": "From markup to React",
    "overall_difficulty": "beginner",
    "estimated_completion_weeks": 12,
    "phases": [
        {
            "phase_title": "Foundations",
            "modules": [
                {
                    "module_name": "HTML Basics",
                    "difficulty": 1,
                    "estimated_hours": 4,
                    "skills_covered": ["HTML"],
                },
                {
                    "module_name": "JavaScript Essentials",
                    "difficulty": 2,
                    "estimated_hours": 10,
                    "skills_covered": ["JavaScript"],
                },
            ],
        },
        {
            "phase_title": "Frameworks",
            "modules": [
                {
                    "module_name": "React",
                    "difficulty": 4,
                    "estimated_hours": 12,
                    "skills_covered": ["React"],
                }
            ],
        },
    ],
}


def _completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def _generator(handler, **kwargs):
    kwargs.setdefault("api_key", "test-key")
    return RoadmapGenerator(
        base_url="http://llm.test/v1",
        model="test-llm",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


CONTEXT = UserQueryContext(
    goals_text="Frontend Development",
    skills_text="HTML",
    experience_level="beginner",
    time_available=6,
)


@pytest.mark.asyncio
async def test_generate_parses_json_and_drops_known_skills():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return _completion(json.dumps(ROADMAP_JSON))

    roadmap = await _generator(handler).generate(CONTEXT, ["s1"], ["g1"])

    assert seen["url"] == "http://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert seen["body"]["model"] == "test-llm"
    assert "Weekly learning time: 6 hours" in seen["body"]["messages"][1]["content"]
    assert "s1" in seen["body"]["messages"][1]["content"]

    assert roadmap.title == "Frontend Developer Roadmap"
    assert [m.module_name for m in roadmap.modules] == ["JavaScript Essentials", "React"]
    assert [m.phase for m in roadmap.modules] == ["Foundations", "Frameworks"]
    assert [m.difficulty for m in roadmap.modules] == ["beginner", "advanced"]
    assert roadmap.metadata["generation_method"] == "custom"
    assert roadmap.metadata["generated_by"] == "test-llm"
    assert roadmap.metadata["redundant_modules_removed"] == 1


@pytest.mark.asyncio
async def test_generate_accepts_fenced_output_with_trailing_commas():
    content = '```json\n{"roadmap_title": "Data Path", "modules": [{"module_name": "Pandas",},],}\n```'

    roadmap = await _generator(lambda request: _completion(content)).generate(CONTEXT)

    assert roadmap.title == "Data Path"
    assert [m.module_name for m in roadmap.modules] == ["Pandas"]


@pytest.mark.asyncio
async def test_timeout_raises_generation_timeout():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(GenerationTimeoutError):
        await _generator(handler).generate(CONTEXT)


@pytest.mark.asyncio
async def test_http_error_raises_generation_error():
    with pytest.raises(GenerationError) as exc_info:
        await _generator(lambda request: httpx.Response(500, text="boom")).generate(CONTEXT)

    assert not isinstance(exc_info.value, GenerationTimeoutError)


@pytest.mark.asyncio
async def test_connection_error_raises_generation_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GenerationError):
        await _generator(handler).generate(CONTEXT)


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["I cannot help with that.", "[1, 2, 3]", ""])
async def test_unusable_output_raises_generation_error(content):
    with pytest.raises(GenerationError):
        await _generator(lambda request: _completion(content)).generate(CONTEXT)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"roadmap_title": 2024, "modules": []},
        {"roadmap_title": "Path", "modules": [{"module_name": 7}]},
        {"roadmap_title": "Path", "metadata": "notes"},
    ],
)
async def test_wrongly_typed_roadmap_raises_generation_error(payload):
    generator = _generator(lambda request: _completion(json.dumps(payload)))
    with pytest.raises(GenerationError, match="invalid roadmap"):
        await generator.generate(CONTEXT)


@pytest.mark.asyncio
async def test_missing_api_key():
    calls = []

    def handler(request):
        calls.append(request)
        return _completion("{}")

    with pytest.raises(GenerationError):
        await _generator(handler, api_key="").generate(CONTEXT)
    assert calls == []


def test_remove_redundant_modules_flat_and_phased():
    data = {
        "modules": [
            {"module_name": "CSS", "skills_covered": ["CSS"]},
            {"module_name": "Node", "skills_covered": ["Node.js"]},
        ],
        "phases": [
            {"phase_title": "P1", "modules": [{"module_name": "HTML", "skills_covered": "HTML, Forms"}]},
        ],
    }

    cleaned, removed = remove_redundant_modules(data, ["css", " html "])

    assert removed == 2
    assert [m["module_name"] for m in cleaned["modules"]] == ["Node"]
    assert cleaned["phases"][0]["modules"] == []
    assert len(data["modules"]) == 2


def test_remove_redundant_modules_without_known_skills():
    data = {"modules": [{"module_name": "CSS", "skills_covered": ["CSS"]}]}
    cleaned, removed = remove_redundant_modules(data, [])
    assert removed == 0
    assert cleaned == data


@pytest.mark.parametrize(
    "text,expected",
    [
        ('{"a": 1}', {"a": 1}),
        ('Here you go:\n{"a": {"b": "}"}}\nEnjoy!', {"a": {"b": "}"}}),
        ('{"ok": True, "missing": None}', {"ok": True, "missing": None}),
        ('{"a": [1, 2]', {"a": [1, 2]}),
    ],
)
def test_parse_json_robust(text, expected):
    ok, value = parse_json_robust(text)
    assert ok is True
    assert value == expected


def test_parse_json_robust_gives_up():
    assert parse_json_robust("no json here") == (False, None)
    assert parse_json_robust("") == (False, None)
