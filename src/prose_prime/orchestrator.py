from __future__ import annotations

import asyncio
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from loguru import logger

from prose_prime.errors import GenerationError, InvalidInputError
from prose_prime.models import SessionRecord
from prose_prime.progress import follow_up_questions, missing_fields, progress_from_missing
from prose_prime.prompts import build_coach_system_prompt, build_coach_user_prompt
from prose_prime.provider import CoachProvider
from prose_prime.safety import LEVEL_NONE, SafetyAssessment, SafetyClassifier, merge_safety_flags
from prose_prime.schemas import (
    SOURCE_FALLBACK,
    SOURCE_MODEL,
    SOURCE_SAFETY,
    CoachReply,
    CoachResult,
    parse_coach_result,
)
from prose_prime.store import SessionStore

MAX_CONTEXT_MESSAGES = 12

FALLBACK_MESSAGE = (
    "Thanks - I'm going to help you organize this for court. Answer the questions below as clearly "
    "as you can (short sentences, dates if possible)."
)


@dataclass(frozen=True)
class GenerationSucceeded:
    result: CoachResult


@dataclass(frozen=True)
class GenerationFailed:
    reason: str


GenerationOutcome = GenerationSucceeded | GenerationFailed


@dataclass
class TurnResult:
    session: SessionRecord
    reply: CoachReply


class CoachOrchestrator:
    def __init__(
        self,
        *,
        store: SessionStore,
        provider: CoachProvider | None,
        model: str,
        max_tokens: int,
        temperature: float,
        timeout_seconds: float,
        context_messages: int = MAX_CONTEXT_MESSAGES,
        classifier: SafetyClassifier | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout_seconds = timeout_seconds
        self._context_messages = max(1, min(MAX_CONTEXT_MESSAGES, context_messages))
        self._classifier = classifier or SafetyClassifier()
        self._system_prompt = build_coach_system_prompt()
        self._session_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def handle_turn(self, session_id: str, user_message: str) -> TurnResult:
        if not isinstance(session_id, str) or not session_id.strip():
            raise InvalidInputError("Missing sessionId")
        text = (user_message or "").strip() if isinstance(user_message, str) else ""
        if not text:
            raise InvalidInputError("Missing userMessage")

        async with self._serialized(session_id):
            return await self._run(session_id, text)

    async def _run(self, session_id: str, text: str) -> TurnResult:
        self._store.append_message(session_id, "user", text)
        session = self._store.get(session_id)

        assessment = self._classifier.assess(text)
        if assessment.is_urgent:
            logger.warning(f"Session {session_id}: urgent safety flags {list(assessment.flags)}, skipping generation")
            reply = self._safety_reply(session, assessment)
        else:
            outcome = await self._generate(session, text)
            if isinstance(outcome, GenerationSucceeded):
                reply = self._model_reply(session, assessment, outcome.result)
            else:
                logger.warning(f"Session {session_id}: using fallback coach ({outcome.reason})")
                reply = self._fallback_reply(session, assessment)

        if reply.extracted_facts:
            self._store.merge_facts(session_id, reply.extracted_facts)
        if reply.safety_flags or assessment.level != LEVEL_NONE:
            self._store.update_safety(session_id, reply.safety_flags, assessment.level)
        self._store.append_message(session_id, "assistant", reply.assistant_message)

        logger.info(
            f"Session {session_id}: turn complete (source={reply.source}, "
            f"progress={reply.progress_percent}%, missing={reply.missing_fields})"
        )
        return TurnResult(session=self._store.get(session_id), reply=reply)

    async def _generate(self, session: SessionRecord, text: str) -> GenerationOutcome:
        if self._provider is None:
            return GenerationFailed("no provider configured")

        # The new user message is already appended; context is what came before it.
        history = session.messages[:-1][-self._context_messages:]
        user_prompt = build_coach_user_prompt(
            jurisdiction=session.jurisdiction,
            track=session.track.value if session.track is not None else "",
            facts=session.facts.to_dict(),
            recent=history,
            user_message=text,
        )

        try:
            raw = await asyncio.wait_for(
                self._provider.complete_json(
                    self._model,
                    self._max_tokens,
                    self._temperature,
                    self._system_prompt,
                    user_prompt,
                ),
                timeout=self._timeout_seconds,
            )
            return GenerationSucceeded(parse_coach_result(raw))
        except TimeoutError:
            return GenerationFailed(f"timed out after {self._timeout_seconds:g}s")
        except GenerationError as ex:
            return GenerationFailed(str(ex))
        except Exception as ex:
            logger.opt(exception=ex).debug("Coach provider call failed")
            return GenerationFailed(f"{type(ex).__name__}: {ex}")

    def _safety_reply(self, session: SessionRecord, assessment: SafetyAssessment) -> CoachReply:
        missing = missing_fields(session)
        return CoachReply(
            assistant_message=assessment.message or "",
            next_questions=[],
            extracted_facts={},
            missing_fields=missing,
            progress_percent=progress_from_missing(len(missing)),
            safety_flags=merge_safety_flags(session.facts.safety_flags, assessment.flags),
            source=SOURCE_SAFETY,
            safety_level=assessment.level,
        )

    def _model_reply(self, session: SessionRecord, assessment: SafetyAssessment, result: CoachResult) -> CoachReply:
        # An empty list from the model means it did not say, not that nothing is missing.
        if result.missing_fields:
            missing = result.missing_fields
            progress = result.progress_percent
        else:
            missing = missing_fields(session)
            progress = None
        if progress is None:
            progress = progress_from_missing(len(missing))
        return CoachReply(
            assistant_message=result.assistant_message,
            next_questions=list(result.next_questions),
            extracted_facts=dict(result.extracted_facts),
            missing_fields=list(missing),
            progress_percent=progress,
            safety_flags=merge_safety_flags(session.facts.safety_flags, assessment.flags, result.safety_flags),
            source=SOURCE_MODEL,
            safety_level=assessment.level,
        )

    def _fallback_reply(self, session: SessionRecord, assessment: SafetyAssessment) -> CoachReply:
        missing = missing_fields(session)
        return CoachReply(
            assistant_message=FALLBACK_MESSAGE,
            next_questions=follow_up_questions(missing),
            extracted_facts={},
            missing_fields=missing,
            progress_percent=progress_from_missing(len(missing)),
            safety_flags=merge_safety_flags(session.facts.safety_flags, assessment.flags),
            source=SOURCE_FALLBACK,
            safety_level=assessment.level,
        )

    @asynccontextmanager
    async def _serialized(self, session_id: str) -> AsyncIterator[None]:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        async with lock:
            yield
