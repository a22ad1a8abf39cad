"""Utilities for persisting per-session voice transcripts."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Any

class TranscriptLogWriter:
    """Write a snapshot of each finished voice session to a timestamped file.

    Folder and file names use the server's local time, or ``tz`` when given,
    the same clock as the date-stamped app logs.
    """

    def __init__(
        self,
        base_dir: Path,
        *,
        min_level: int | None,
        tz: tzinfo | None = None,
    ) -> None:
        self._base_dir = base_dir.resolve()
        self._min_level = min_level
        self._tz = tz

    @property
    def enabled(self) -> bool:
        # Treat the snapshot as an INFO-level event.
        return self._min_level is not None and logging.INFO >= self._min_level

    async def write(
        self,
        *,
        session_id: str,
        started_at: datetime,
        profile: dict[str, Any],
        transcript: list[dict[str, Any]],
        closed_at: datetime | None = None,
    ) -> Path | None:
        """Append a structured snapshot for a session if enabled."""

        if not self.enabled:
            return None

        closed = (closed_at or datetime.now(timezone.utc)).astimezone(timezone.utc)
        started_utc = started_at.astimezone(timezone.utc)
        safe_session_id = session_id.replace("/", "_")

        entry = {
            "type": "voice_session",
            "session_id": session_id,
            "started_at": started_utc.isoformat(),
            "closed_at": closed.isoformat(),
            "profile": profile,
            "turn_count": len(transcript),
            "transcript": transcript,
        }
        rendered_entry = json.dumps(entry, ensure_ascii=False, indent=2)
        local_time = started_utc.astimezone(self._tz)
        local_date = local_time.strftime("%Y-%m-%d")
        tz_abbr = local_time.tzname() or "local"
        human_time = local_time.strftime("%Y-%m-%d_%H-%M-%S")

        log_path = (
            self._base_dir
            / local_date
            / f"voice_{human_time}_{tz_abbr}_{safe_session_id}.log"
        )

        delimiter = "=" * 80
        header = closed.strftime("%Y-%m-%d %H:%M:%S UTC")
        payload = f"{header}\n{delimiter}\n{rendered_entry}\n{delimiter}\n"

        await asyncio.to_thread(self._append_entry, log_path, payload)
        return log_path

    def _append_entry(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(content)


__all__ = ["TranscriptLogWriter"]
