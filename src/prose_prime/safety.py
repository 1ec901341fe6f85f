"""Deterministic safety screening of user messages.

The classifier runs before any generation is attempted and never calls out
to a model, so an urgent message is always answered with the fixed safety
text even when the coach provider is down.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

LEVEL_NONE = "none"
LEVEL_CONCERN = "concern"
LEVEL_URGENT = "urgent"

_LEVEL_RANK = {LEVEL_NONE: 0, LEVEL_CONCERN: 1, LEVEL_URGENT: 2}

URGENT_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(kill myself|suicide|end my life|self[-\s]?harm)\b", re.IGNORECASE), "self-harm"),
    (re.compile(r"\b(kill you|kill him|kill her|shoot|stab|hurt them)\b", re.IGNORECASE), "harm-to-others"),
    (re.compile(r"\b(he has a gun|she has a gun|weapon|knife|i have a gun)\b", re.IGNORECASE), "weapon-mention"),
    (
        re.compile(r"\b(i'm in danger|i am in danger|unsafe right now|he's outside|she's outside)\b", re.IGNORECASE),
        "immediate-danger",
    ),
)

CONCERN_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(stalking|follow(ing)? me|tracking me)\b", re.IGNORECASE), "stalking"),
    (re.compile(r"\b(threat(en|ening|s)?|blackmail)\b", re.IGNORECASE), "threats"),
    (re.compile(r"\b(domestic violence|abuse(d)?|hit me|choked me|strangled)\b", re.IGNORECASE), "dv-indicator"),
)


def urgent_message() -> str:
    return "\n".join(
        [
            "I'm concerned you may be in immediate danger.",
            "If you are in the U.S. and you feel unsafe right now, call 911.",
            "If you can't call safely, try to get to a safe place and contact someone you trust "
            "or a local emergency service.",
            "If this is about self-harm, you can call or text 988 (Suicide & Crisis Lifeline in the U.S.).",
            "If you're outside the U.S., contact your local emergency number or crisis hotline.",
            "",
            "If you want, tell me (1) whether you are safe right now, and (2) whether this is "
            "an emergency situation today.",
        ]
    )


@dataclass(frozen=True)
class SafetyAssessment:
    level: str
    flags: tuple[str, ...] = ()
    message: str | None = None

    @property
    def is_urgent(self) -> bool:
        return self.level == LEVEL_URGENT


class SafetyClassifier:
    def __init__(
        self,
        urgent_patterns: tuple[tuple[re.Pattern[str], str], ...] = URGENT_PATTERNS,
        concern_patterns: tuple[tuple[re.Pattern[str], str], ...] = CONCERN_PATTERNS,
    ):
        self._urgent_patterns = urgent_patterns
        self._concern_patterns = concern_patterns

    def assess(self, text: str | None) -> SafetyAssessment:
        # Phones often send curly apostrophes ("he’s outside").
        body = str(text or "").replace("’", "'")

        urgent = _match(self._urgent_patterns, body)
        if urgent:
            return SafetyAssessment(level=LEVEL_URGENT, flags=urgent, message=urgent_message())

        concern = _match(self._concern_patterns, body)
        if concern:
            return SafetyAssessment(level=LEVEL_CONCERN, flags=concern)

        return SafetyAssessment(level=LEVEL_NONE)


def _match(patterns: tuple[tuple[re.Pattern[str], str], ...], text: str) -> tuple[str, ...]:
    flags: list[str] = []
    for pattern, flag in patterns:
        if flag not in flags and pattern.search(text):
            flags.append(flag)
    return tuple(flags)


def merge_safety_flags(*groups: Iterable[str] | None) -> list[str]:
    """Ordered union of flag groups; blanks dropped, first occurrence wins."""
    merged: list[str] = []
    for group in groups:
        for flag in group or ():
            if not isinstance(flag, str):
                continue
            cleaned = flag.strip()
            if cleaned and cleaned not in merged:
                merged.append(cleaned)
    return merged


def higher_level(a: str | None, b: str | None) -> str:
    a = a if a in _LEVEL_RANK else LEVEL_NONE
    b = b if b in _LEVEL_RANK else LEVEL_NONE
    return a if _LEVEL_RANK[a] >= _LEVEL_RANK[b] else b
