import asyncio
import json
import unittest

from prose_prime.errors import SessionNotFoundError
from prose_prime.packet import DEFAULT_EVIDENCE_CHECKLIST, IMMEDIATE_RISK_FLAG
from prose_prime.prompts import DISCLAIMER
from tests.fakes import FakeProvider, build_service

_MODEL_PACKET = json.dumps(
    {
        "oral_script_2min": "Your Honor, I am asking for repairs.",
        "oral_outline_5min": "1) Relief\n2) Events",
        "timeline": [{"date": "2024-01-05", "event": "Heat stopped working"}],
        "evidence_checklist": ["Photos of the radiator"],
        "gaps": ["Date of the first repair request"],
        "reviewer_packet": {"key_facts": ["No heat since January"], "key_requests": ["Order repairs"]},
        "safety_flags": [],
    }
)


class PacketGeneratorTests(unittest.TestCase):
    def test_fallback_packet_without_provider(self) -> None:
        service, _ = build_service(None)
        session = service.create_session(
            track="landlord tenant",
            seed_facts={"goal_relief": "Order the landlord to fix the heat", "key_events": "Heat off\n- Called landlord"},
        )

        packet = asyncio.run(service.get_packet(session.id))

        self.assertEqual("fallback", packet["source"])
        self.assertEqual(DISCLAIMER, packet["disclaimer"])
        self.assertIn("Order the landlord to fix the heat", packet["oral_script_2min"])
        self.assertEqual(
            [
                {"date": "Unknown/approx", "event": "Heat off"},
                {"date": "Unknown/approx", "event": "Called landlord"},
            ],
            packet["timeline"],
        )
        self.assertEqual(list(DEFAULT_EVIDENCE_CHECKLIST), packet["evidence_checklist"])
        self.assertTrue(any("rent ledger" in gap for gap in packet["gaps"]))
        self.assertEqual("NY_HOUSING_LANDLORD_TENANT", packet["reviewer_packet"]["track"])

    def test_packet_is_cached_until_regenerated(self) -> None:
        provider = FakeProvider(_MODEL_PACKET)
        service, store = build_service(provider)
        session = service.create_session()

        first = asyncio.run(service.get_packet(session.id))
        second = asyncio.run(service.get_packet(session.id))
        self.assertEqual(1, len(provider.calls))
        self.assertEqual(first, second)
        self.assertEqual("model", first["source"])
        self.assertEqual("Order repairs", first["reviewer_packet"]["key_requests"][0])

        asyncio.run(service.get_packet(session.id, regenerate=True))
        self.assertEqual(2, len(provider.calls))
        self.assertIsNotNone(store.get(session.id).outputs)

    def test_incomplete_model_packet_falls_back(self) -> None:
        service, _ = build_service(FakeProvider(json.dumps({"oral_script_2min": "only a script"})))
        session = service.create_session()

        packet = asyncio.run(service.get_packet(session.id))

        self.assertEqual("fallback", packet["source"])
        self.assertTrue(packet["oral_outline_5min"])

    def test_urgent_last_message_adds_immediate_risk_flag(self) -> None:
        service, store = build_service(None)
        session = service.create_session()
        store.append_message(session.id, "user", "I'm in danger right now")

        packet = asyncio.run(service.get_packet(session.id))

        self.assertEqual(IMMEDIATE_RISK_FLAG, packet["safety_flags"][0])
        self.assertIn("immediate-danger", packet["safety_flags"])

    def test_unknown_session_raises(self) -> None:
        service, _ = build_service(None)
        with self.assertRaises(SessionNotFoundError):
            asyncio.run(service.get_packet("missing"))


if __name__ == "__main__":
    unittest.main()
