"""Oral advocacy packet: script, outline, timeline and checklists for a session.

Packets are cached on the session record and only rebuilt on request.
"""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from prose_prime.errors import GenerationError
from prose_prime.facts import has_text
from prose_prime.models import SessionRecord
from prose_prime.progress import compute_gaps
from prose_prime.prompts import DISCLAIMER, build_packet_system_prompt, build_packet_user_prompt
from prose_prime.provider import CoachProvider
from prose_prime.safety import SafetyClassifier
from prose_prime.schemas import coerce_packet, load_json_object
from prose_prime.store import SessionStore

PACKET_CONTEXT_MESSAGES = 12
IMMEDIATE_RISK_FLAG = "danger_possible_immediate_risk"

DEFAULT_EVIDENCE_CHECKLIST = (
    "Texts / messages (screenshots)",
    "Call logs / voicemails",
    "Photos / videos",
    "Witness names + what they saw",
    "Police / medical / shelter records (if any)",
    "Court orders / prior filings (if any)",
)


class PacketGenerator:
    def __init__(
        self,
        *,
        store: SessionStore,
        provider: CoachProvider | None,
        model: str,
        max_tokens: int,
        temperature: float,
        timeout_seconds: float,
        classifier: SafetyClassifier | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout_seconds = timeout_seconds
        self._classifier = classifier or SafetyClassifier()

    async def get_or_generate(self, session_id: str, *, regenerate: bool = False) -> dict[str, Any]:
        session = self._store.get(session_id)
        if session.outputs is not None and not regenerate:
            logger.debug(f"Session {session_id}: packet served from cache ({session.outputs.generated_at})")
            return session.outputs.payload

        packet = await self._generate(session)
        if packet is None:
            packet = self.build_fallback(session)
            packet["source"] = "fallback"
        else:
            packet["source"] = "model"
        packet["disclaimer"] = DISCLAIMER

        self._store.save_outputs(session_id, packet)
        logger.info(f"Session {session_id}: packet generated (source={packet['source']})")
        return packet

    async def _generate(self, session: SessionRecord) -> dict[str, Any] | None:
        if self._provider is None:
            return None

        track = session.track.value if session.track is not None else ""
        user_prompt = build_packet_user_prompt(
            jurisdiction=session.jurisdiction,
            track=track,
            facts=session.facts.to_dict(),
            recent=session.recent_messages(PACKET_CONTEXT_MESSAGES),
        )
        try:
            raw = await asyncio.wait_for(
                self._provider.complete_json(
                    self._model,
                    self._max_tokens,
                    self._temperature,
                    build_packet_system_prompt(),
                    user_prompt,
                ),
                timeout=self._timeout_seconds,
            )
            parsed = load_json_object(raw)
        except TimeoutError:
            logger.warning(f"Session {session.id}: packet generation timed out after {self._timeout_seconds:g}s")
            return None
        except GenerationError as ex:
            logger.warning(f"Session {session.id}: packet generation failed ({ex})")
            return None
        except Exception as ex:
            logger.warning(f"Session {session.id}: packet generation failed ({type(ex).__name__}: {ex})")
            return None

        packet = coerce_packet(
            parsed,
            jurisdiction=session.jurisdiction,
            track=track,
            goal_relief=session.facts.goal_relief or "",
        )
        if packet is None:
            logger.warning(f"Session {session.id}: packet response missing script or outline")
        return packet

    def build_fallback(self, session: SessionRecord) -> dict[str, Any]:
        facts = session.facts
        jurisdiction = session.jurisdiction or facts.jurisdiction or "New York"
        track = session.track.value if session.track is not None else (facts.track or "unknown")
        goal = facts.goal_relief if has_text(facts.goal_relief) else "Not specified yet."

        timeline = [item.to_dict() for item in facts.timeline or []]
        if not timeline:
            narrative = facts.key_events or facts.user_story or ""
            lines = [line.strip() for line in narrative.splitlines() if line.strip()][:8]
            timeline = [{"date": "Unknown/approx", "event": line.lstrip("- ").strip()} for line in lines]

        evidence = list(facts.evidence) if facts.evidence else list(DEFAULT_EVIDENCE_CHECKLIST)

        gaps = compute_gaps(facts, session.track)
        gaps.append("Identify the single strongest example that supports your request.")
        gaps.append("Write 1-2 sentences on what the other side will argue and your short response.")

        people = ", ".join(facts.key_people or []) or "[List parties and relationship]"
        proof = "documents and witnesses" if facts.evidence else "texts, photos, and records"

        script = (
            f"Your Honor, my name is [NAME]. I'm here in {jurisdiction} regarding {track}.\n"
            f"I'm asking the Court for: {goal}\n\n"
            "In brief, the key facts are:\n"
            "1) [Most important event with date]\n"
            "2) [Second important event with date]\n"
            "3) [Current situation + why relief is needed now]\n\n"
            f"I can support this with evidence such as: {proof}.\n"
            f"Based on these facts, I respectfully request: {goal}.\n"
        )

        if timeline:
            events = "\n".join(f"   {i}. {t['date'] or 'Unknown date'}: {t['event']}" for i, t in enumerate(timeline, 1))
        else:
            events = "   - [Add 3-6 events with dates]"
        outline = (
            f"1) What I'm asking for (relief)\n   - {goal}\n\n"
            f"2) Key people / relationship\n   - {people}\n\n"
            f"3) Key events (date order)\n{events}\n\n"
            "4) Why this matters to the Court\n"
            "   - [Connect the most serious facts to why the Court should grant the relief]\n\n"
            "5) Evidence\n" + "\n".join(f"   - {item}" for item in evidence) + "\n\n"
            f"6) Closing\n   - Restate request: {goal}\n   - Ask for next steps the Court wants\n"
        )

        return {
            "oral_script_2min": script,
            "oral_outline_5min": outline,
            "timeline": timeline,
            "evidence_checklist": evidence,
            "gaps": gaps,
            "reviewer_packet": {
                "jurisdiction": jurisdiction,
                "track": track,
                "goal_relief": goal,
                "key_facts": [f"{t['date']}: {t['event']}" for t in timeline[:6]],
                "key_requests": [goal],
            },
            "safety_flags": self._safety_flags(session),
        }

    def _safety_flags(self, session: SessionRecord) -> list[str]:
        assessment = self._classifier.assess(session.last_user_message())
        if assessment.is_urgent:
            return [IMMEDIATE_RISK_FLAG, *assessment.flags]
        return list(assessment.flags)
