"""Per-connection voice session state machine and the registry of live sessions."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import suppress
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Protocol

from pydantic import BaseModel, ValidationError

from ..schemas.voice import (
    ConfigMessage,
    ErrorEvent,
    ListeningEvent,
    SpeakingEvent,
    TranscriptEvent,
    parse_inbound,
)
from .conversation_window import DEFAULT_MAX_TURNS, ConversationWindow

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..config import Settings
    from .response_generator import ResponseGenerator
    from .transcript_logging import TranscriptLogWriter

logger = logging.getLogger(__name__)

DEFAULT_SENIOR_NAME = "Friend"
DEFAULT_GIFTER_NAME = "Someone who loves you"
DEFAULT_AUDIO_FRAME_THRESHOLD = 1000


class SessionState(str, Enum):
    AWAITING_CONFIG = "AWAITING_CONFIG"
    GREETING = "GREETING"
    LISTENING = "LISTENING"
    GENERATING = "GENERATING"
    ERRORED = "ERRORED"
    CLOSED = "CLOSED"


class VoiceChannel(Protocol):
    """The outbound half of a voice connection."""

    async def send_json(self, data: Any) -> None: ...


@dataclass
class SessionProfile:
    """Who the companion is talking to, as set by the last config message."""

    senior_name: str = DEFAULT_SENIOR_NAME
    gifter_name: str = DEFAULT_GIFTER_NAME
    bio_context: str = ""

    @classmethod
    def from_config(cls, message: ConfigMessage) -> "SessionProfile":
        """Build a fresh profile; omitted fields fall back to defaults."""

        return cls(
            senior_name=message.senior_name or DEFAULT_SENIOR_NAME,
            gifter_name=message.gifter_name or DEFAULT_GIFTER_NAME,
            bio_context=message.bio_context or "",
        )


def build_greeting(senior_name: str) -> str:
    return f"Hello {senior_name}. I'm here whenever you need me. How can I help?"


class VoiceSession:
    """Tracks the state of a single voice client connection.

    Utterances and config messages are handled one at a time in arrival
    order. The delayed
    ``listening`` cue is a task owned by the session and is cancelled when a
    new turn starts or the session closes.
    """

    def __init__(
        self,
        channel: VoiceChannel,
        generator: "ResponseGenerator",
        *,
        session_id: Optional[str] = None,
        greeting_cue_delay: float = 3.0,
        reply_cue_delay: float = 2.0,
        max_turns: int = DEFAULT_MAX_TURNS,
        audio_frame_threshold: int = DEFAULT_AUDIO_FRAME_THRESHOLD,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.channel = channel
        self.profile = SessionProfile()
        self.window = ConversationWindow(max_turns)
        self.state = SessionState.AWAITING_CONFIG
        self.started_at = datetime.now(timezone.utc)
        self.transcript: list[dict[str, str]] = []

        self._generator = generator
        self._greeting_cue_delay = greeting_cue_delay
        self._reply_cue_delay = reply_cue_delay
        self._audio_frame_threshold = audio_frame_threshold
        self._turn_lock = asyncio.Lock()
        self._turn_tasks: set[asyncio.Task[None]] = set()
        self._cue_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def listening_cue_pending(self) -> bool:
        return self._cue_task is not None and not self._cue_task.done()

    async def handle_frame(
        self, *, text: Optional[str] = None, data: Optional[bytes] = None
    ) -> None:
        """Dispatch one inbound frame."""

        if self._closed:
            return

        if data is not None and len(data) >= self._audio_frame_threshold:
            logger.debug(
                "Received audio data for session %s: %d bytes",
                self.session_id,
                len(data),
            )
            await self._send(ListeningEvent())
            return

        raw = text if text is not None else data
        if raw is None:
            return

        try:
            message = parse_inbound(raw)
        except ValidationError as exc:
            logger.warning(
                "Rejected malformed frame for session %s (%d error(s)): %s",
                self.session_id,
                exc.error_count(),
                exc.errors()[0].get("msg") if exc.error_count() else "",
            )
            await self._send(ErrorEvent())
            return

        if isinstance(message, ConfigMessage):
            if self._turn_lock.locked() or self._turn_tasks:
                # A turn is in flight; greet after it in arrival order.
                self._track(self._apply_config(message), "voice_config")
            else:
                await self._apply_config(message)
        else:
            self.submit_text(message.text)

    async def _apply_config(self, message: ConfigMessage) -> None:
        try:
            await self.configure(message)
        except Exception as exc:
            logger.error(
                "Failed to apply config for session %s: %s",
                self.session_id,
                exc,
                exc_info=True,
            )
            await self._send(ErrorEvent())

    async def configure(self, message: ConfigMessage) -> None:
        """Reset the profile, greet the user and cue listening."""

        async with self._turn_lock:
            if self._closed:
                return
            self._cancel_listening()
            self.state = SessionState.GREETING
            self.profile = SessionProfile.from_config(message)
            logger.info(
                "Session %s configured for %s", self.session_id, self.profile.senior_name
            )

            greeting = build_greeting(self.profile.senior_name)
            self.window.append("assistant", greeting)
            self._record("assistant", greeting)

            await self._send(TranscriptEvent(text=greeting))
            await self._send(SpeakingEvent())
            if self._closed:
                return
            self.state = SessionState.LISTENING
            self._schedule_listening(self._greeting_cue_delay)

    def submit_text(self, text: str) -> asyncio.Task[None]:
        """Queue an utterance without blocking the receive loop."""

        return self._track(self.respond(text), "voice_turn")

    def _track(self, coro: Any, prefix: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=f"{prefix}_{self.session_id}")
        self._turn_tasks.add(task)
        task.add_done_callback(self._turn_tasks.discard)
        return task

    async def respond(self, text: str) -> None:
        """Answer one utterance: speaking cue, reply transcript, listening cue."""

        async with self._turn_lock:
            if self._closed:
                logger.debug(
                    "Dropping queued utterance for closed session %s", self.session_id
                )
                return

            self._cancel_listening()
            self.state = SessionState.GENERATING
            self._record("user", text)

            try:
                await self._send(SpeakingEvent())
                reply = await self._generator.generate(self, text)
            except Exception as exc:
                logger.error(
                    "Failed to answer utterance for session %s: %s",
                    self.session_id,
                    exc,
                    exc_info=True,
                )
                if not self._closed:
                    self.state = SessionState.ERRORED
                    await self._send(ErrorEvent())
                return

            if self._closed:
                logger.info(
                    "Discarding reply for closed session %s", self.session_id
                )
                return

            self._record("assistant", reply)
            await self._send(TranscriptEvent(text=reply))
            if self._closed:
                return
            self.state = SessionState.LISTENING
            self._schedule_listening(self._reply_cue_delay)

    async def wait_for_turns(self) -> None:
        """Wait until every queued utterance has been handled."""

        while self._turn_tasks:
            await asyncio.gather(*list(self._turn_tasks), return_exceptions=True)

    async def close(self) -> None:
        """Mark the session closed and cancel its pending cue.

        In-flight generation is left to finish; its output is discarded.
        """

        if self.state is SessionState.CLOSED:
            return
        self._closed = True
        self.state = SessionState.CLOSED
        task = self._cue_task
        self._cancel_listening()
        if task is not None and task is not asyncio.current_task():
            with suppress(asyncio.CancelledError):
                await task

    def _record(self, role: str, text: str) -> None:
        if not text:
            return
        self.transcript.append(
            {
                "role": role,
                "text": text,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    def _schedule_listening(self, delay: float) -> None:
        self._cancel_listening()
        self._cue_task = asyncio.create_task(
            self._emit_listening_after(delay),
            name=f"voice_listening_cue_{self.session_id}",
        )

    def _cancel_listening(self) -> None:
        task = self._cue_task
        self._cue_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()

    async def _emit_listening_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._send(ListeningEvent())

    async def _send(self, event: BaseModel) -> bool:
        if self._closed:
            return False
        try:
            await self.channel.send_json(event.model_dump())
        except Exception as exc:
            logger.info(
                "Send failed for session %s, treating connection as closed: %s",
                self.session_id,
                exc,
            )
            self._closed = True
            self.state = SessionState.CLOSED
            self._cancel_listening()
            return False
        return True

    def __repr__(self) -> str:
        return f"VoiceSession(id={self.session_id!r}, state={self.state.value})"


class VoiceSessionRegistry:
    """Process-wide table of live voice connections and their sessions."""

    def __init__(
        self,
        generator: "ResponseGenerator",
        *,
        greeting_cue_delay: float = 3.0,
        reply_cue_delay: float = 2.0,
        max_turns: int = DEFAULT_MAX_TURNS,
        audio_frame_threshold: int = DEFAULT_AUDIO_FRAME_THRESHOLD,
        transcript_logger: "TranscriptLogWriter | None" = None,
    ) -> None:
        self._generator = generator
        self._greeting_cue_delay = greeting_cue_delay
        self._reply_cue_delay = reply_cue_delay
        self._max_turns = max_turns
        self._audio_frame_threshold = audio_frame_threshold
        self._transcript_logger = transcript_logger
        # Keyed by id(); WebSocket objects are not hashable.
        self._sessions: dict[int, VoiceSession] = {}

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        generator: "ResponseGenerator",
        *,
        transcript_logger: "TranscriptLogWriter | None" = None,
    ) -> "VoiceSessionRegistry":
        return cls(
            generator,
            greeting_cue_delay=settings.greeting_cue_delay,
            reply_cue_delay=settings.reply_cue_delay,
            max_turns=settings.voice_history_limit,
            audio_frame_threshold=settings.audio_frame_threshold,
            transcript_logger=transcript_logger,
        )

    def register(self, channel: VoiceChannel) -> VoiceSession:
        """Create and register a session for an already-open channel."""

        key = id(channel)
        if key in self._sessions:
            raise ValueError("Connection already has a registered voice session")
        session = VoiceSession(
            channel,
            self._generator,
            greeting_cue_delay=self._greeting_cue_delay,
            reply_cue_delay=self._reply_cue_delay,
            max_turns=self._max_turns,
            audio_frame_threshold=self._audio_frame_threshold,
        )
        self._sessions[key] = session
        logger.info(
            "Voice session %s opened (%d active)", session.session_id, len(self)
        )
        return session

    async def connect(self, websocket: Any) -> VoiceSession:
        """Accept a new WebSocket connection and create a session."""

        if id(websocket) in self._sessions:
            raise ValueError("Connection already has a registered voice session")
        await websocket.accept()
        return self.register(websocket)

    async def disconnect(self, channel: VoiceChannel) -> VoiceSession | None:
        """Remove and close the session bound to ``channel``."""

        session = self._sessions.pop(id(channel), None)
        if session is None:
            return None
        await session.close()
        logger.info(
            "Voice session %s closed (%d active)", session.session_id, len(self)
        )
        await self._write_transcript(session)
        return session

    async def close_all(self) -> None:
        for session in list(self._sessions.values()):
            await self.disconnect(session.channel)

    def get(self, channel: VoiceChannel) -> VoiceSession | None:
        return self._sessions.get(id(channel))

    def sessions(self) -> list[VoiceSession]:
        return list(self._sessions.values())

    def __contains__(self, channel: object) -> bool:
        return id(channel) in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def _write_transcript(self, session: VoiceSession) -> None:
        if self._transcript_logger is None or not session.transcript:
            return
        try:
            await self._transcript_logger.write(
                session_id=session.session_id,
                started_at=session.started_at,
                profile=asdict(session.profile),
                transcript=list(session.transcript),
            )
        except OSError as exc:
            logger.warning(
                "Failed to write transcript for session %s: %s",
                session.session_id,
                exc,
            )


__all__ = [
    "DEFAULT_GIFTER_NAME",
    "DEFAULT_SENIOR_NAME",
    "SessionProfile",
    "SessionState",
    "VoiceChannel",
    "VoiceSession",
    "VoiceSessionRegistry",
    "build_greeting",
]
