from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

_MAX_PEOPLE = 25
_MAX_DATES = 25
_MAX_LOCATIONS = 25
_MAX_EVIDENCE = 30
_MAX_SAFETY_FLAGS = 10
_MAX_TIMELINE = 60
_MAX_INCIDENTS = 50

SAFETY_LEVELS = ("none", "concern", "urgent")

_ITEM_LABEL_KEYS = ("name", "item", "description", "label", "text")
_ITEM_DETAIL_KEYS = ("role", "relationship", "type")

# Older clients sent these names; they are folded into the canonical field.
_KEY_ALIASES = {
    "people": "key_people",
}


@dataclass(frozen=True)
class TimelineItem:
    date: str
    event: str

    def to_dict(self) -> dict:
        return {"date": self.date, "event": self.event}


@dataclass
class SessionFacts:
    """Structured facts gathered during intake.

    The known fields are typed and normalized. Anything else the coach or the
    client sends is kept untouched in ``extra`` so it survives round trips.
    A field left at ``None`` was never provided; an empty list was provided
    and is empty.
    """

    jurisdiction: str | None = None
    track: str | None = None
    goal_relief: str | None = None
    user_story: str | None = None
    key_events: str | None = None
    key_people: list[str] | None = None
    locations: list[str] | None = None
    key_dates: list[str] | None = None
    timeline: list[TimelineItem] | None = None
    evidence: list[str] | None = None
    child_info: str | None = None
    relationship_context: str | None = None
    incidents: list[dict] | None = None
    safety_flags: list[str] | None = None
    safety_level: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SessionFacts:
        raw = canonicalize_keys(data or {})
        known = {name for name in cls.__dataclass_fields__ if name != "extra"}

        safety_level = _text(raw.get("safety_level"))
        if safety_level not in SAFETY_LEVELS:
            safety_level = None

        return cls(
            jurisdiction=_text(raw.get("jurisdiction")),
            track=_text(raw.get("track")),
            goal_relief=_text(raw.get("goal_relief")),
            user_story=_text(raw.get("user_story")),
            key_events=_text(raw.get("key_events")),
            key_people=_str_list(raw, "key_people", _MAX_PEOPLE),
            locations=_str_list(raw, "locations", _MAX_LOCATIONS),
            key_dates=_str_list(raw, "key_dates", _MAX_DATES),
            timeline=_timeline(raw),
            evidence=_str_list(raw, "evidence", _MAX_EVIDENCE),
            child_info=_text(raw.get("child_info")),
            relationship_context=_text(raw.get("relationship_context")),
            incidents=_incidents(raw),
            safety_flags=_str_list(raw, "safety_flags", _MAX_SAFETY_FLAGS),
            safety_level=safety_level,
            extra={k: copy.deepcopy(v) for k, v in raw.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = copy.deepcopy(self.extra)
        for name in self.__dataclass_fields__:
            if name == "extra":
                continue
            value = getattr(self, name)
            if value is None:
                continue
            if name == "timeline":
                out[name] = [item.to_dict() for item in value]
            else:
                out[name] = copy.deepcopy(value)
        return out


def canonicalize_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in data.items():
        canonical = _KEY_ALIASES.get(key, key)
        if canonical != key and canonical in data:
            # The canonical spelling wins when both are present.
            continue
        out[canonical] = value
    return out


def deep_merge(base: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively fold ``patch`` into a copy of ``base``.

    Mappings on both sides are merged key by key. Any other patch value,
    lists included, replaces the existing value outright.
    """
    out: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in patch.items():
        existing = out.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            out[key] = deep_merge(existing, value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def merge_facts(existing: SessionFacts, patch: Mapping[str, Any] | None) -> SessionFacts:
    if not patch:
        return SessionFacts.from_dict(existing.to_dict())
    merged = deep_merge(existing.to_dict(), canonicalize_keys(patch))
    return SessionFacts.from_dict(merged)


def has_text(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _str_list(raw: Mapping[str, Any], key: str, limit: int) -> list[str] | None:
    if key not in raw:
        return None
    value = raw[key]
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    items = [_item_text(item) for item in value]
    return [item for item in items if item][:limit]


def _item_text(item: object) -> str:
    """Flatten a list entry to text; models sometimes send {"name": ..., "role": ...} objects."""
    if not isinstance(item, Mapping):
        return _text(item) or ""
    label = next((t for t in (_text(item.get(k)) for k in _ITEM_LABEL_KEYS) if t), "")
    detail = next((t for t in (_text(item.get(k)) for k in _ITEM_DETAIL_KEYS) if t), "")
    if label and detail:
        return f"{label} ({detail})"
    return label or detail


def _timeline(raw: Mapping[str, Any]) -> list[TimelineItem] | None:
    if "timeline" not in raw:
        return None
    value = raw["timeline"]
    if not isinstance(value, (list, tuple)):
        return []
    items: list[TimelineItem] = []
    for entry in value:
        if isinstance(entry, TimelineItem):
            items.append(entry)
        elif isinstance(entry, Mapping):
            date = _text(entry.get("date", entry.get("when"))) or ""
            event = _text(entry.get("event", entry.get("what"))) or ""
            if date or event:
                items.append(TimelineItem(date=date, event=event))
        if len(items) >= _MAX_TIMELINE:
            break
    return items


def _incidents(raw: Mapping[str, Any]) -> list[dict] | None:
    if "incidents" not in raw:
        return None
    value = raw["incidents"]
    if not isinstance(value, (list, tuple)):
        return []
    return [copy.deepcopy(dict(item)) for item in value if isinstance(item, Mapping)][:_MAX_INCIDENTS]
