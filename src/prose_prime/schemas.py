from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from prose_prime.errors import GenerationError
from prose_prime.progress import clamp_progress

MAX_NEXT_QUESTIONS = 6

SOURCE_SAFETY = "safety"
SOURCE_MODEL = "model"
SOURCE_FALLBACK = "fallback"

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class CoachResult:
    """What the coach model returned, after validation."""

    assistant_message: str
    next_questions: list[str] = field(default_factory=list)
    extracted_facts: dict[str, Any] = field(default_factory=dict)
    missing_fields: list[str] | None = None
    progress_percent: int | None = None
    safety_flags: list[str] = field(default_factory=list)


@dataclass
class CoachReply:
    """The reply handed back for one turn."""

    assistant_message: str
    next_questions: list[str]
    extracted_facts: dict[str, Any]
    missing_fields: list[str]
    progress_percent: int
    safety_flags: list[str]
    source: str
    safety_level: str = "none"

    def to_dict(self) -> dict[str, Any]:
        return {
            "assistant_message": self.assistant_message,
            "next_questions": list(self.next_questions),
            "extracted_facts": dict(self.extracted_facts),
            "missing_fields": list(self.missing_fields),
            "progress_percent": self.progress_percent,
            "safety_flags": list(self.safety_flags),
            "safety_level": self.safety_level,
            "source": self.source,
        }


def load_json_object(text: str | None) -> dict[str, Any]:
    if not isinstance(text, str) or not text.strip():
        raise GenerationError("Empty model response")
    body = text.strip()
    fenced = _FENCE_RE.match(body)
    if fenced:
        body = fenced.group(1)
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as ex:
        raise GenerationError(f"Model response is not valid JSON: {ex}") from ex
    if not isinstance(parsed, dict):
        raise GenerationError(f"Model response is {type(parsed).__name__}, expected an object")
    return parsed


def parse_coach_result(text: str | None) -> CoachResult:
    raw = load_json_object(text)

    message = raw.get("assistant_message")
    if not isinstance(message, str) or not message.strip():
        raise GenerationError("Model response has no assistant_message")

    facts = raw.get("extracted_facts", raw.get("facts_extracted"))
    missing = raw.get("missing_fields")
    progress = raw.get("progress_percent")

    return CoachResult(
        assistant_message=message.strip(),
        next_questions=string_list(raw.get("next_questions"), MAX_NEXT_QUESTIONS),
        extracted_facts=dict(facts) if isinstance(facts, dict) else {},
        missing_fields=string_list(missing) if isinstance(missing, list) else None,
        progress_percent=_progress(progress),
        safety_flags=string_list(raw.get("safety_flags"), 10),
    )


def string_list(value: object, limit: int | None = None) -> list[str]:
    if not isinstance(value, list):
        return []
    items = [str(item).strip() for item in value if isinstance(item, (str, int, float)) and not isinstance(item, bool)]
    items = [item for item in items if item]
    return items if limit is None else items[:limit]


def _progress(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return clamp_progress(value)


def coerce_packet(raw: dict[str, Any], *, jurisdiction: str, track: str, goal_relief: str) -> dict[str, Any] | None:
    """Normalize a generated packet; ``None`` when the script or outline is missing."""
    reviewer = raw.get("reviewer_packet") if isinstance(raw.get("reviewer_packet"), dict) else {}
    timeline = []
    for item in raw.get("timeline") or []:
        if isinstance(item, dict):
            timeline.append({"date": str(item.get("date") or ""), "event": str(item.get("event") or "")})

    packet = {
        "oral_script_2min": str(raw.get("oral_script_2min") or ""),
        "oral_outline_5min": str(raw.get("oral_outline_5min") or ""),
        "timeline": timeline,
        "evidence_checklist": string_list(raw.get("evidence_checklist")),
        "gaps": string_list(raw.get("gaps")),
        "reviewer_packet": {
            "jurisdiction": str(reviewer.get("jurisdiction") or jurisdiction or "unknown"),
            "track": str(reviewer.get("track") or track or "unknown"),
            "goal_relief": str(reviewer.get("goal_relief") or goal_relief or "unknown"),
            "key_facts": string_list(reviewer.get("key_facts")),
            "key_requests": string_list(reviewer.get("key_requests")),
        },
        "safety_flags": string_list(raw.get("safety_flags")),
    }
    if not packet["oral_script_2min"].strip() or not packet["oral_outline_5min"].strip():
        return None
    return packet
