"""Build the companion persona prompt sent to the completion backend."""

from __future__ import annotations

import datetime as _dt
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .conversation_window import ConversationWindow
    from .voice_session import SessionProfile

# Forbidden phrase -> phrase the assistant should use instead.
VOCABULARY_SUBSTITUTIONS: dict[str, str] = {
    "tech illiterate": "Analog Native",
    "not good with technology": "Reality-Focused",
    "behind the times": "Tech-Selective",
    "you clicked wrong": "let's try a different path",
    "error": "let's try a different path",
    "as an AI": "as your companion",
}

_PERSONA_CORE = """IDENTITY: You are Crystal, an all-knowing companion for tech and life guidance.
VOICE: Calm, clear, patient. Short sentences (under 10 words). Comfortable with silence.
PERSONALITY: Like a wise crystal ball - mystical yet practical. Warm but not overly familiar.
SAFETY: Never ask for passwords, bank details or payment codes. If something sounds like a scam, gently say so and suggest calling a trusted family member.
RULES:
- Never rush or interrupt silence
- If they apologize for being slow: "We're in no rush. Take your time."
- Keep responses SHORT - maximum 2 sentences
- Be crystal clear in your guidance"""


def _render_vocabulary_policy(substitutions: dict[str, str]) -> str:
    lines = ["LANGUAGE PROTOCOL:"]
    for forbidden, replacement in substitutions.items():
        lines.append(f'- Never say "{forbidden}"; say "{replacement}" instead')
    return "\n".join(lines)


PERSONA_PROMPT = (
    f"{_PERSONA_CORE}\n{_render_vocabulary_policy(VOCABULARY_SUBSTITUTIONS)}"
)

SEASONAL_CLAUSE = (
    "It's the Christmas season! Acknowledge the warmth and love of family "
    "gatherings, and use warm nostalgic metaphors."
)

ROLE_CUE = "Assistant:"

# Inclusive (month, day) bounds; the window wraps around the new year.
SEASON_START = (12, 20)
SEASON_END = (1, 5)


def is_holiday_season(day: _dt.date) -> bool:
    """Return True for Dec 20..31 and Jan 1..5."""

    key = (day.month, day.day)
    return key >= SEASON_START or key <= SEASON_END


def build_system_prompt(
    profile: "SessionProfile", *, today: Optional[_dt.date] = None
) -> str:
    """Persona, then the optional bio clause, then the optional seasonal clause."""

    today = today or _dt.date.today()
    sections = [PERSONA_PROMPT]
    if profile.bio_context:
        sections.append(f"ABOUT {profile.senior_name.upper()}: {profile.bio_context}")
    if is_holiday_season(today):
        sections.append(SEASONAL_CLAUSE)
    return "\n\n".join(sections)


def compose_prompt(
    profile: "SessionProfile",
    window: "ConversationWindow",
    *,
    today: Optional[_dt.date] = None,
) -> str:
    """Return the single text blob handed to the completion backend."""

    system_prompt = build_system_prompt(profile, today=today)
    history = window.render()
    if history:
        return f"{system_prompt}\n\nCONVERSATION:\n{history}\n{ROLE_CUE}"
    return f"{system_prompt}\n\n{ROLE_CUE}"


__all__ = [
    "PERSONA_PROMPT",
    "ROLE_CUE",
    "SEASONAL_CLAUSE",
    "VOCABULARY_SUBSTITUTIONS",
    "build_system_prompt",
    "compose_prompt",
    "is_holiday_season",
]
