from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from prose_prime.facts import SessionFacts

ROLES = ("user", "assistant")


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds")


class Track(str, Enum):
    PROTECTION_ORDER = "NY_FAMILY_PROTECTION_FROM_ABUSE"
    CUSTODY = "NY_FAMILY_CUSTODY"
    LANDLORD_TENANT = "NY_HOUSING_LANDLORD_TENANT"
    GENERIC = "GENERIC"

    @classmethod
    def parse(cls, value: object, default: Track | None = None) -> Track:
        """Resolve an enum value or a free-text case category to a Track."""
        if isinstance(value, Track):
            return value
        text = str(value or "").strip()
        if not text:
            return default or cls.GENERIC
        for track in cls:
            if text.upper() == track.value or text.upper() == track.name:
                return track
        lowered = text.lower()
        for track, pattern in _TRACK_KEYWORDS:
            if pattern.search(lowered):
                return track
        return cls.GENERIC


# Whole words only: "advice" must not read as "dv".
_TRACK_KEYWORDS = (
    (Track.PROTECTION_ORDER, re.compile(r"\b(protection|protective|abus(?:e|ed|ive)|dv|pfa)\b")),
    (Track.CUSTODY, re.compile(r"\b(custody|visitation)\b")),
    (Track.LANDLORD_TENANT, re.compile(r"\b(landlords?|tenants?|tenancy|housing|evictions?)\b")),
)


@dataclass(frozen=True)
class ChatMessage:
    id: str
    role: str
    content: str
    ts: str

    def to_dict(self) -> dict:
        return {"id": self.id, "role": self.role, "content": self.content, "ts": self.ts}

    @classmethod
    def from_dict(cls, data: dict) -> ChatMessage:
        return cls(
            id=str(data["id"]),
            role=str(data["role"]),
            content=str(data.get("content", "")),
            ts=str(data["ts"]),
        )


@dataclass(frozen=True)
class CachedOutputs:
    generated_at: str
    payload: dict[str, Any]

    def to_dict(self) -> dict:
        return {"generated_at": self.generated_at, "payload": copy.deepcopy(self.payload)}

    @classmethod
    def from_dict(cls, data: dict) -> CachedOutputs:
        return cls(generated_at=str(data["generated_at"]), payload=dict(data.get("payload") or {}))


@dataclass
class SessionRecord:
    id: str
    created_at: str
    updated_at: str
    jurisdiction: str
    track: Track | None
    facts: SessionFacts = field(default_factory=SessionFacts)
    messages: list[ChatMessage] = field(default_factory=list)
    outputs: CachedOutputs | None = None

    def touch(self, now: str | None = None) -> str:
        """Bump ``updated_at``; it never moves backwards."""
        stamp = now or utc_now()
        self.updated_at = max(stamp, self.updated_at, self.created_at)
        return self.updated_at

    def recent_messages(self, limit: int) -> list[ChatMessage]:
        if limit <= 0:
            return []
        return list(self.messages[-limit:])

    def last_user_message(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "jurisdiction": self.jurisdiction,
            "track": self.track.value if self.track is not None else None,
            "facts": self.facts.to_dict(),
            "messages": [m.to_dict() for m in self.messages],
            "outputs": self.outputs.to_dict() if self.outputs is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionRecord:
        outputs = data.get("outputs")
        return cls(
            id=str(data["id"]),
            created_at=str(data["created_at"]),
            updated_at=str(data["updated_at"]),
            jurisdiction=str(data.get("jurisdiction") or ""),
            track=Track.parse(data["track"]) if data.get("track") else None,
            facts=SessionFacts.from_dict(data.get("facts") or {}),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages") or []],
            outputs=CachedOutputs.from_dict(outputs) if outputs else None,
        )
