"""Turn a user utterance into an assistant reply via the completion backend."""

from __future__ import annotations

import datetime as _dt
import logging
from typing import TYPE_CHECKING, Callable, Protocol

from ..openrouter import OpenRouterConfigurationError
from .prompt_composer import compose_prompt

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .voice_session import VoiceSession

logger = logging.getLogger(__name__)

REASSURANCE_REPLY = "I'm here with you. Take your time."
RESTING_REPLY = "I'm just resting for a moment. We're in no rush."


class CompletionBackend(Protocol):
    """Single-shot text completion: plain prompt in, plain text out."""

    async def complete(self, prompt: str) -> str: ...


class ResponseGenerator:
    """Wrap the completion backend with the session's history and persona.

    Backend failures are absorbed into ``RESTING_REPLY`` and leave no
    assistant turn in the window. Missing credentials are not a backend
    failure and propagate to the caller.
    """

    def __init__(
        self,
        backend: CompletionBackend,
        *,
        today_provider: Callable[[], _dt.date] = _dt.date.today,
    ) -> None:
        self._backend = backend
        self._today_provider = today_provider

    async def generate(self, session: "VoiceSession", utterance: str) -> str:
        window = session.window
        window.append("user", utterance)
        prompt = compose_prompt(session.profile, window, today=self._today_provider())

        try:
            completion = await self._backend.complete(prompt)
        except OpenRouterConfigurationError:
            raise
        except Exception as exc:
            logger.error(
                "Completion failed for session %s: %s",
                session.session_id,
                exc,
                exc_info=True,
            )
            return RESTING_REPLY

        reply = completion.strip() if isinstance(completion, str) else ""
        if not reply:
            logger.info(
                "Empty completion for session %s; using reassurance reply",
                session.session_id,
            )
            reply = REASSURANCE_REPLY
        window.append("assistant", reply)
        return reply


__all__ = [
    "CompletionBackend",
    "REASSURANCE_REPLY",
    "RESTING_REPLY",
    "ResponseGenerator",
]
