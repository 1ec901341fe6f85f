from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from contextlib import contextmanager
from typing import Any, Iterator
from uuid import uuid4

from loguru import logger

from prose_prime.errors import InvalidInputError, SessionNotFoundError
from prose_prime.facts import SessionFacts, has_text, merge_facts
from prose_prime.models import ROLES, CachedOutputs, ChatMessage, SessionRecord, Track, utc_now
from prose_prime.safety import higher_level, merge_safety_flags
from prose_prime.store.backends import RecordBackend

DEFAULT_JURISDICTION = "New York"
DEFAULT_TRACK = Track.PROTECTION_ORDER

_CLASSIFICATION_KEYS = ("jurisdiction", "track")


class SessionStore:
    """Session records over a pluggable backend.

    Every mutation loads the full record, changes it, bumps ``updated_at`` and
    writes it back. The read-modify-write runs under a per-session lock so
    callers sharing one store in a process never drop each other's updates.
    """

    def __init__(
        self,
        backend: RecordBackend,
        *,
        default_jurisdiction: str = DEFAULT_JURISDICTION,
        default_track: Track = DEFAULT_TRACK,
    ):
        self._backend = backend
        self._default_jurisdiction = default_jurisdiction
        self._default_track = default_track
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def close(self) -> None:
        self._backend.close()

    def create(
        self,
        *,
        jurisdiction: str | None = None,
        track: Track | str | None = None,
        seed_facts: Mapping[str, Any] | None = None,
    ) -> SessionRecord:
        now = utc_now()
        resolved_jurisdiction = (jurisdiction or "").strip() or self._default_jurisdiction
        resolved_track = Track.parse(track, default=self._default_track)

        facts = merge_facts(SessionFacts(), seed_facts or {})
        if has_text(facts.jurisdiction) and not (jurisdiction or "").strip():
            resolved_jurisdiction = facts.jurisdiction
        if has_text(facts.track) and not track:
            resolved_track = Track.parse(facts.track, default=self._default_track)
        facts.jurisdiction = resolved_jurisdiction
        facts.track = resolved_track.value

        record = SessionRecord(
            id=str(uuid4()),
            created_at=now,
            updated_at=now,
            jurisdiction=resolved_jurisdiction,
            track=resolved_track,
            facts=facts,
        )
        self._backend.save(record.to_dict())
        logger.info(f"Session created: {record.id} ({resolved_jurisdiction}, {resolved_track.value})")
        return record

    def find(self, session_id: str) -> SessionRecord | None:
        if not session_id:
            return None
        data = self._backend.load(session_id)
        if data is None:
            return None
        return SessionRecord.from_dict(data)

    def get(self, session_id: str) -> SessionRecord:
        record = self.find(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        return record

    def list(self, limit: int | None = None) -> list[SessionRecord]:
        records: list[SessionRecord] = []
        for session_id in self._backend.list_ids(limit):
            record = self.find(session_id)
            if record is not None:
                records.append(record)
        return records

    def delete(self, session_id: str) -> bool:
        with self._locked(session_id):
            removed = self._backend.remove(session_id)
        self._forget_lock(session_id)
        if removed:
            logger.info(f"Session deleted: {session_id}")
        return removed

    def patch(
        self,
        session_id: str,
        *,
        jurisdiction: str | None = None,
        track: Track | str | None = None,
        facts_patch: Mapping[str, Any] | None = None,
    ) -> SessionRecord:
        with self._mutate(session_id) as record:
            if jurisdiction is not None:
                record.jurisdiction = jurisdiction.strip()
                record.facts.jurisdiction = record.jurisdiction
            if track is not None:
                record.track = Track.parse(track) if str(track).strip() else None
                record.facts.track = record.track.value if record.track is not None else None
            if facts_patch:
                self._apply_facts(record, facts_patch)
        return record

    def append_message(self, session_id: str, role: str, content: str) -> ChatMessage:
        if role not in ROLES:
            raise InvalidInputError(f"Unsupported message role: {role!r}")
        with self._mutate(session_id) as record:
            message = ChatMessage(id=str(uuid4()), role=role, content=str(content or ""), ts=utc_now())
            record.messages.append(message)
        return message

    def messages(self, session_id: str) -> list[ChatMessage]:
        return list(self.get(session_id).messages)

    def merge_facts(self, session_id: str, patch: Mapping[str, Any]) -> SessionFacts:
        with self._mutate(session_id) as record:
            self._apply_facts(record, patch)
        return record.facts

    def update_safety(self, session_id: str, flags: Iterable[str], level: str) -> SessionFacts:
        with self._mutate(session_id) as record:
            record.facts.safety_flags = merge_safety_flags(record.facts.safety_flags, flags)
            record.facts.safety_level = higher_level(record.facts.safety_level, level)
        return record.facts

    def save_outputs(self, session_id: str, payload: Mapping[str, Any]) -> None:
        with self._mutate(session_id) as record:
            record.outputs = CachedOutputs(generated_at=utc_now(), payload=dict(payload))

    def _apply_facts(self, record: SessionRecord, patch: Mapping[str, Any]) -> None:
        # Classification fields live on the record as well; a blank value changes neither copy.
        patch = {k: v for k, v in patch.items() if k not in _CLASSIFICATION_KEYS or has_text(v)}
        record.facts = merge_facts(record.facts, patch)
        if "jurisdiction" in patch:
            record.jurisdiction = str(patch["jurisdiction"]).strip()
            record.facts.jurisdiction = record.jurisdiction
        if "track" in patch:
            record.track = Track.parse(patch["track"])
            record.facts.track = record.track.value

    @contextmanager
    def _mutate(self, session_id: str) -> Iterator[SessionRecord]:
        with self._locked(session_id):
            record = self.find(session_id)
            if record is None:
                # Unknown ids must not leave a lock behind.
                self._forget_lock(session_id)
                raise SessionNotFoundError(session_id)
            yield record
            record.touch()
            self._backend.save(record.to_dict())

    @contextmanager
    def _locked(self, session_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(session_id, threading.RLock())
        with lock:
            yield

    def _forget_lock(self, session_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(session_id, None)
