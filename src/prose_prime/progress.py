from __future__ import annotations

from prose_prime.facts import SessionFacts, has_text
from prose_prime.models import SessionRecord, Track

FIELD_JURISDICTION = "jurisdiction"
FIELD_TRACK = "track"
FIELD_GOAL = "goal_relief"
FIELD_PEOPLE = "people"
FIELD_EVENTS = "key_events_or_timeline"
FIELD_EVIDENCE = "evidence"

TRACKED_FIELDS = (
    FIELD_JURISDICTION,
    FIELD_TRACK,
    FIELD_GOAL,
    FIELD_PEOPLE,
    FIELD_EVENTS,
    FIELD_EVIDENCE,
)

PROGRESS_FLOOR = 5
PROGRESS_CEILING = 95
MAX_FOLLOW_UP_QUESTIONS = 4

FOLLOW_UP_QUESTIONS = {
    FIELD_GOAL: "What exactly do you want the judge to do (the result you're asking for)?",
    FIELD_PEOPLE: "Who is involved (names/initials, relationship, and who you are asking about)?",
    FIELD_EVENTS: "What are the 3-6 most important events in date order (include dates or approximate dates)?",
    FIELD_EVIDENCE: "What proof do you have (texts, emails, photos, witnesses, medical/police records, etc.)?",
}

_COMPLETE_QUESTIONS = (
    "What is the strongest fact that supports what you're asking for?",
    "What is the other side likely to say back, and what would your response be?",
)


def missing_fields(session: SessionRecord) -> list[str]:
    facts = session.facts
    present = {
        FIELD_JURISDICTION: has_text(session.jurisdiction),
        FIELD_TRACK: session.track is not None,
        FIELD_GOAL: has_text(facts.goal_relief),
        FIELD_PEOPLE: bool(facts.key_people),
        FIELD_EVENTS: has_text(facts.key_events) or bool(facts.timeline),
        FIELD_EVIDENCE: bool(facts.evidence),
    }
    return [name for name in TRACKED_FIELDS if not present[name]]


def progress_from_missing(missing_count: int) -> int:
    total = len(TRACKED_FIELDS)
    filled = total - max(0, min(total, missing_count))
    return clamp_progress(round(100 * filled / total))


def clamp_progress(value: float) -> int:
    return int(max(PROGRESS_FLOOR, min(PROGRESS_CEILING, round(value))))


def progress_percent(session: SessionRecord) -> int:
    return progress_from_missing(len(missing_fields(session)))


def follow_up_questions(missing: list[str], limit: int = MAX_FOLLOW_UP_QUESTIONS) -> list[str]:
    """One templated question per open fact gap, in priority order."""
    questions = [FOLLOW_UP_QUESTIONS[name] for name in FOLLOW_UP_QUESTIONS if name in missing]
    if not questions:
        questions = list(_COMPLETE_QUESTIONS)
    return questions[: max(0, limit)]


def compute_gaps(facts: SessionFacts, track: Track | str | None = None) -> list[str]:
    """Describe what is still missing for a court-ready story."""
    gaps: list[str] = []

    if not has_text(facts.goal_relief):
        gaps.append("What exactly are you asking the court to do (your requested outcome/relief)?")

    if not facts.key_people:
        gaps.append("Who are the key people involved (full names if possible) and what is each person's role?")

    timeline = facts.timeline or []
    if not timeline:
        gaps.append("A basic timeline: key dates in order with what happened on each date.")
    else:
        if any(not has_text(item.event) for item in timeline):
            gaps.append("Some timeline entries are missing the event description (what happened).")
        if any(not has_text(item.date) for item in timeline):
            gaps.append("Some timeline entries are missing dates (approximate dates are okay).")

    if not facts.evidence:
        gaps.append(
            "Any supporting evidence you may have (texts, emails, photos, screenshots, witnesses, receipts, records)."
        )

    resolved = Track.parse(track if track is not None else facts.track)
    if resolved is Track.PROTECTION_ORDER:
        gaps.append(
            "For each incident: what was said/done, where it happened, when it happened, and whether there "
            "were witnesses or records (texts, photos, medical/police reports)."
        )
        gaps.append("Any current safety concerns or urgency (immediate danger, threats, stalking, access to weapons).")
    elif resolved is Track.CUSTODY:
        gaps.append("What is the current custody/visitation arrangement (if any), and what change are you asking for?")
        gaps.append("Concrete examples supporting why the change is needed (dates, behaviors, impacts on the child).")
    elif resolved is Track.LANDLORD_TENANT:
        gaps.append(
            "Address of the property and the key events (lease start, notices, repair requests, payments, court dates)."
        )
        gaps.append(
            "Documents you have: lease, notices, rent ledger, repair requests, photos, inspection reports, "
            "communications."
        )

    if not has_text(facts.user_story) and not has_text(facts.key_events) and len(timeline) < 2:
        gaps.append("A short summary of what happened (3-6 sentences) so the story is clear even without details.")

    deduped: list[str] = []
    for gap in gaps:
        if gap not in deduped:
            deduped.append(gap)
    return deduped
