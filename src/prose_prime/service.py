from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from prose_prime.errors import InvalidInputError
from prose_prime.models import ChatMessage, SessionRecord, Track
from prose_prime.orchestrator import CoachOrchestrator, TurnResult
from prose_prime.packet import PacketGenerator
from prose_prime.progress import compute_gaps, missing_fields, progress_from_missing
from prose_prime.store import SessionStore


class SessionService:
    """Transport-agnostic session API: what an HTTP layer or console front end calls."""

    def __init__(self, store: SessionStore, orchestrator: CoachOrchestrator, packets: PacketGenerator):
        self._store = store
        self._orchestrator = orchestrator
        self._packets = packets

    def create_session(
        self,
        *,
        jurisdiction: str | None = None,
        track: Track | str | None = None,
        seed_facts: Mapping[str, Any] | None = None,
    ) -> SessionRecord:
        if seed_facts is not None and not isinstance(seed_facts, Mapping):
            raise InvalidInputError("seed_facts must be an object")
        return self._store.create(jurisdiction=jurisdiction, track=track, seed_facts=seed_facts)

    def get_session(self, session_id: str) -> SessionRecord:
        return self._store.get(_require_id(session_id))

    def list_sessions(self, *, limit: int | None = None) -> list[SessionRecord]:
        return self._store.list(limit)

    def patch_session(
        self,
        session_id: str,
        *,
        jurisdiction: str | None = None,
        track: Track | str | None = None,
        facts_patch: Mapping[str, Any] | None = None,
    ) -> SessionRecord:
        if facts_patch is not None and not isinstance(facts_patch, Mapping):
            raise InvalidInputError("facts_patch must be an object")
        return self._store.patch(
            _require_id(session_id),
            jurisdiction=jurisdiction,
            track=track,
            facts_patch=facts_patch,
        )

    def delete_session(self, session_id: str) -> bool:
        return self._store.delete(_require_id(session_id))

    def append_message(self, session_id: str, role: str, content: str) -> ChatMessage:
        if not isinstance(content, str) or not content.strip():
            raise InvalidInputError("Missing message content")
        return self._store.append_message(_require_id(session_id), role, content.strip())

    def conversation(self, session_id: str) -> list[ChatMessage]:
        return self._store.messages(_require_id(session_id))

    async def handle_turn(self, session_id: str, user_message: str) -> TurnResult:
        return await self._orchestrator.handle_turn(session_id, user_message)

    async def get_packet(self, session_id: str, *, regenerate: bool = False) -> dict[str, Any]:
        return await self._packets.get_or_generate(_require_id(session_id), regenerate=regenerate)

    def progress(self, session_id: str) -> dict[str, Any]:
        session = self.get_session(session_id)
        missing = missing_fields(session)
        return {
            "session_id": session.id,
            "missing_fields": missing,
            "progress_percent": progress_from_missing(len(missing)),
            "gaps": compute_gaps(session.facts, session.track),
        }


def _require_id(session_id: str) -> str:
    if not isinstance(session_id, str) or not session_id.strip():
        raise InvalidInputError("Missing sessionId")
    return session_id.strip()
