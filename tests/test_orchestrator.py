import asyncio
import json
import unittest

from prose_prime.errors import GenerationError, InvalidInputError, SessionNotFoundError
from prose_prime.orchestrator import FALLBACK_MESSAGE
from prose_prime.progress import FIELD_EVENTS, FIELD_EVIDENCE, FIELD_GOAL, FIELD_PEOPLE, FOLLOW_UP_QUESTIONS
from prose_prime.safety import urgent_message
from prose_prime.schemas import SOURCE_FALLBACK, SOURCE_MODEL, SOURCE_SAFETY
from tests.fakes import FakeProvider, build_service

_MODEL_REPLY = json.dumps(
    {
        "assistant_message": "Thanks. Who else was there?",
        "next_questions": ["Who else was there?"],
        "extracted_facts": {"goal_relief": "Order of protection", "people": ["J.D. (ex-partner)"]},
        "safety_flags": ["threats"],
    }
)

_EXPECTED_FALLBACK_QUESTIONS = [
    FOLLOW_UP_QUESTIONS[FIELD_GOAL],
    FOLLOW_UP_QUESTIONS[FIELD_PEOPLE],
    FOLLOW_UP_QUESTIONS[FIELD_EVENTS],
    FOLLOW_UP_QUESTIONS[FIELD_EVIDENCE],
]


class CoachOrchestratorTests(unittest.TestCase):
    def test_urgent_message_skips_generation(self) -> None:
        provider = FakeProvider(_MODEL_REPLY)
        service, _ = build_service(provider)
        session = service.create_session()

        result = asyncio.run(service.handle_turn(session.id, "I have a gun and he's outside"))

        self.assertEqual([], provider.calls)
        self.assertEqual(SOURCE_SAFETY, result.reply.source)
        self.assertEqual(urgent_message(), result.reply.assistant_message)
        self.assertEqual([], result.reply.next_questions)
        self.assertIn("weapon-mention", result.reply.safety_flags)
        self.assertIn("immediate-danger", result.reply.safety_flags)
        self.assertEqual("urgent", result.session.facts.safety_level)
        self.assertEqual(["user", "assistant"], [m.role for m in result.session.messages])

    def test_fallback_without_provider_asks_four_questions_in_order(self) -> None:
        service, _ = build_service(None)
        session = service.create_session()

        result = asyncio.run(service.handle_turn(session.id, "I need help with my case"))

        self.assertEqual(SOURCE_FALLBACK, result.reply.source)
        self.assertEqual(FALLBACK_MESSAGE, result.reply.assistant_message)
        self.assertEqual(_EXPECTED_FALLBACK_QUESTIONS, result.reply.next_questions)
        self.assertEqual([FIELD_GOAL, FIELD_PEOPLE, FIELD_EVENTS, FIELD_EVIDENCE], result.reply.missing_fields)
        self.assertEqual(33, result.reply.progress_percent)

    def test_malformed_model_output_falls_back(self) -> None:
        for raw in ("not json at all", '{"next_questions": ["x"]}', "[]"):
            with self.subTest(raw=raw):
                provider = FakeProvider(raw)
                service, _ = build_service(provider)
                session = service.create_session()

                result = asyncio.run(service.handle_turn(session.id, "We share a lease"))

                self.assertEqual(1, len(provider.calls))
                self.assertEqual(SOURCE_FALLBACK, result.reply.source)
                self.assertEqual(_EXPECTED_FALLBACK_QUESTIONS, result.reply.next_questions)

    def test_provider_errors_fall_back(self) -> None:
        for error in (GenerationError("empty"), RuntimeError("connection reset")):
            with self.subTest(error=type(error).__name__):
                service, _ = build_service(FakeProvider(error))
                session = service.create_session()

                result = asyncio.run(service.handle_turn(session.id, "hello"))

                self.assertEqual(SOURCE_FALLBACK, result.reply.source)

    def test_slow_provider_times_out_to_fallback(self) -> None:
        service, _ = build_service(FakeProvider(_MODEL_REPLY, delay=1.0), timeout_seconds=0.05)
        session = service.create_session()

        result = asyncio.run(service.handle_turn(session.id, "hello"))

        self.assertEqual(SOURCE_FALLBACK, result.reply.source)
        self.assertEqual(2, len(result.session.messages))

    def test_model_reply_merges_facts_and_flags(self) -> None:
        service, store = build_service(FakeProvider(_MODEL_REPLY))
        session = service.create_session()

        result = asyncio.run(service.handle_turn(session.id, "He keeps following me and wants the kids"))

        self.assertEqual(SOURCE_MODEL, result.reply.source)
        self.assertEqual(["Who else was there?"], result.reply.next_questions)
        self.assertEqual("concern", result.reply.safety_level)
        self.assertEqual(["stalking", "threats"], result.reply.safety_flags)
        # Missing fields and progress describe the session as it was before this turn's facts.
        self.assertEqual([FIELD_GOAL, FIELD_PEOPLE, FIELD_EVENTS, FIELD_EVIDENCE], result.reply.missing_fields)
        self.assertEqual(33, result.reply.progress_percent)

        facts = store.get(session.id).facts
        self.assertEqual("Order of protection", facts.goal_relief)
        self.assertEqual(["J.D. (ex-partner)"], facts.key_people)
        self.assertEqual(["stalking", "threats"], facts.safety_flags)
        self.assertEqual("concern", facts.safety_level)
        self.assertEqual(67, service.progress(session.id)["progress_percent"])

    def test_model_progress_and_missing_fields_are_used_when_given(self) -> None:
        reply = json.dumps(
            {"assistant_message": "ok", "missing_fields": ["evidence"], "progress_percent": 80}
        )
        service, _ = build_service(FakeProvider(reply))
        session = service.create_session()

        result = asyncio.run(service.handle_turn(session.id, "hello"))

        self.assertEqual(["evidence"], result.reply.missing_fields)
        self.assertEqual(80, result.reply.progress_percent)

    def test_empty_missing_fields_from_model_are_recomputed(self) -> None:
        reply = json.dumps({"assistant_message": "ok", "missing_fields": [], "progress_percent": 90})
        service, _ = build_service(FakeProvider(reply))
        session = service.create_session()

        result = asyncio.run(service.handle_turn(session.id, "hello"))

        self.assertEqual([FIELD_GOAL, FIELD_PEOPLE, FIELD_EVENTS, FIELD_EVIDENCE], result.reply.missing_fields)
        self.assertEqual(33, result.reply.progress_percent)

    def test_progress_follows_model_missing_fields_when_omitted(self) -> None:
        reply = json.dumps({"assistant_message": "ok", "missing_fields": ["evidence"]})
        service, _ = build_service(FakeProvider(reply))
        session = service.create_session()

        result = asyncio.run(service.handle_turn(session.id, "hello"))

        self.assertEqual(["evidence"], result.reply.missing_fields)
        self.assertEqual(83, result.reply.progress_percent)

    def test_people_extracted_as_objects_are_kept(self) -> None:
        reply = json.dumps(
            {
                "assistant_message": "ok",
                "extracted_facts": {"key_people": [{"name": "J.D.", "role": "ex-partner"}, {"role": "neighbor"}]},
            }
        )
        service, store = build_service(FakeProvider(reply))
        session = service.create_session(seed_facts={"key_people": ["J.D."]})

        asyncio.run(service.handle_turn(session.id, "He is my ex"))

        self.assertEqual(["J.D. (ex-partner)", "neighbor"], store.get(session.id).facts.key_people)
        self.assertNotIn(FIELD_PEOPLE, service.progress(session.id)["missing_fields"])

    def test_flags_accumulate_across_turns(self) -> None:
        service, _ = build_service(None)
        session = service.create_session()

        asyncio.run(service.handle_turn(session.id, "He made threats last week"))
        result = asyncio.run(service.handle_turn(session.id, "Now he is tracking me"))

        self.assertEqual(["threats", "stalking"], result.reply.safety_flags)
        self.assertEqual(["threats", "stalking"], result.session.facts.safety_flags)

    def test_blank_input_is_rejected_without_side_effects(self) -> None:
        service, store = build_service(None)
        session = service.create_session()

        with self.assertRaises(InvalidInputError):
            asyncio.run(service.handle_turn(session.id, "   "))
        with self.assertRaises(InvalidInputError):
            asyncio.run(service.handle_turn("", "hello"))
        self.assertEqual([], store.messages(session.id))

    def test_unknown_session_raises_not_found(self) -> None:
        service, _ = build_service(FakeProvider(_MODEL_REPLY))

        with self.assertRaises(SessionNotFoundError):
            asyncio.run(service.handle_turn("nope", "hello"))

    def test_context_window_is_bounded(self) -> None:
        provider = FakeProvider(_MODEL_REPLY)
        service, store = build_service(provider)
        session = service.create_session()
        for i in range(20):
            store.append_message(session.id, "user" if i % 2 == 0 else "assistant", f"msg-{i:02d}")

        asyncio.run(service.handle_turn(session.id, "latest question"))

        prompt = provider.calls[0]["user_prompt"]
        self.assertNotIn("msg-07", prompt)
        self.assertIn("msg-08", prompt)
        self.assertIn("msg-19", prompt)
        self.assertIn("latest question", prompt)

    def test_concurrent_turns_on_one_session_are_serialized(self) -> None:
        service, _ = build_service(FakeProvider(_MODEL_REPLY, delay=0.05))
        session = service.create_session()

        async def run_both():
            return await asyncio.gather(
                service.handle_turn(session.id, "first"),
                service.handle_turn(session.id, "second"),
            )

        asyncio.run(run_both())

        messages = service.conversation(session.id)
        self.assertEqual(["user", "assistant", "user", "assistant"], [m.role for m in messages])
        self.assertEqual("first", messages[0].content)
        self.assertEqual("second", messages[2].content)


if __name__ == "__main__":
    unittest.main()
