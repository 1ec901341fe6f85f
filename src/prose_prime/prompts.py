import json

from prose_prime.models import ChatMessage

DISCLAIMER = (
    "Legal information only - not legal advice. This tool does not create an attorney-client "
    "relationship. For urgent safety issues, call 911 or local emergency services."
)


def build_coach_system_prompt() -> str:
    return """\
You are Pro-se Prime, a legal-information-only coach for self-represented people.
Your job:
- Ask short, focused follow-up questions to fill missing facts
- Help them organize facts chronologically
- Help them align facts to what they are asking the judge to do
- Keep a calm, trauma-informed, non-judgmental tone
Do NOT give legal advice, do NOT predict outcomes, do NOT tell them what to file, \
do NOT invent facts or law.

Return ONLY valid JSON (no markdown) with keys:
assistant_message (string)
next_questions (string[], 3 to 6 items, highest-impact unknowns first)
extracted_facts (object; only fields you are confident about. Shapes: goal_relief (string), \
key_people (string[], e.g. "J.D. (ex-partner)"), key_dates (string[]), timeline ([{date, event}]), \
key_events (string), evidence (string[]), user_story (string))
missing_fields (string[]; canonical names: jurisdiction, track, goal_relief, people, \
key_events_or_timeline, evidence)
progress_percent (number 0-100)
safety_flags (string[]; include "danger_possible_immediate_risk" if the user suggests \
immediate danger or violence)"""


def build_coach_user_prompt(
    *,
    jurisdiction: str,
    track: str,
    facts: dict,
    recent: list[ChatMessage],
    user_message: str,
) -> str:
    history = "\n".join(f"{m.role.upper()}: {m.content}" for m in recent) or "(none)"
    return (
        f"Context:\nJurisdiction={jurisdiction or 'unknown'}\nTrack={track or 'unknown'}\n"
        f"Facts JSON={json.dumps(facts, ensure_ascii=True)}\n\n"
        f"Conversation so far:\n{history}\n\n"
        f"New user message:\n{user_message}"
    )


def build_packet_system_prompt() -> str:
    return """\
You are Pro-se Prime Outputs Generator.
Generate legal-information-only, non-advice outputs for a self-represented litigant.
Focus on clarity, dates, relevance, and concise oral presentation.
Do NOT give legal advice, do not cite statutes or cases, do not predict outcomes, do not add new facts.
Return ONLY valid JSON (no markdown) matching this schema exactly:
{
  "oral_script_2min": "string",
  "oral_outline_5min": "string",
  "timeline": [{"date": "string", "event": "string"}],
  "evidence_checklist": ["string"],
  "gaps": ["string"],
  "reviewer_packet": {
    "jurisdiction": "string",
    "track": "string",
    "goal_relief": "string",
    "key_facts": ["string"],
    "key_requests": ["string"]
  },
  "safety_flags": ["string"]
}"""


def build_packet_user_prompt(*, jurisdiction: str, track: str, facts: dict, recent: list[ChatMessage]) -> str:
    history = "\n".join(f"{m.role.upper()}: {m.content}" for m in recent) or "(none)"
    return "\n".join(
        [
            "Session context:",
            f"Jurisdiction={jurisdiction or 'unknown'}",
            f"Track={track or 'unknown'}",
            f"Facts JSON={json.dumps(facts, ensure_ascii=True)}",
            "",
            "Conversation (recent):",
            history,
            "",
            'Include "danger_possible_immediate_risk" in safety_flags if the user suggests immediate danger/violence.',
            "Generate the outputs now.",
        ]
    )
