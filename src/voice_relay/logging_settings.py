"""Parse ``logging_settings.conf``, the operator switchboard for relay logs.

Each line is ``key = value`` and ``#`` starts a comment. A destination key
(``terminal``, ``sessions``, ``transcripts``) takes a level name or ``off``;
``retention_hours`` bounds how long files under the log directories live.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger(__name__)

LEVEL_NAMES: dict[str, int | None] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": None,
}

# terminal: console output, sessions: date-stamped app log files,
# transcripts: per-session voice transcript snapshots.
DESTINATIONS = ("terminal", "sessions", "transcripts")

_KEY_ALIASES = {
    "console": "terminal",
    "app": "sessions",
    "conversations": "transcripts",
    "retention": "retention_hours",
}

DEFAULT_LEVEL = logging.INFO
DEFAULT_RETENTION_HOURS = 48


@dataclass(frozen=True)
class LoggingSettings:
    terminal_level: int | None = DEFAULT_LEVEL
    sessions_level: int | None = DEFAULT_LEVEL
    transcripts_level: int | None = DEFAULT_LEVEL
    retention_hours: int = DEFAULT_RETENTION_HOURS

    def root_level(self, console_level: int) -> int:
        """Lowest level any handler needs, so the root logger does not filter it."""
        levels = [console_level]
        if self.sessions_level is not None:
            levels.append(self.sessions_level)
        return min(levels)


def _entries(text: str) -> Iterator[tuple[int, str, str]]:
    for line_no, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        if "=" not in line:
            logger.warning("logging settings line %d ignored: %r", line_no, line)
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        key = key.lower()
        yield line_no, _KEY_ALIASES.get(key, key), value


def _parse_level(key: str, value: str, line_no: int) -> int | None:
    try:
        return LEVEL_NAMES[value.lower()]
    except KeyError:
        logger.warning(
            "logging settings line %d: unknown level %r for %s, using info",
            line_no,
            value,
            key,
        )
        return DEFAULT_LEVEL


def _parse_retention(value: str, line_no: int) -> int:
    try:
        hours = int(value)
    except ValueError:
        logger.warning(
            "logging settings line %d: retention_hours %r is not a number, using %d",
            line_no,
            value,
            DEFAULT_RETENTION_HOURS,
        )
        return DEFAULT_RETENTION_HOURS
    return max(0, hours)


def parse_logging_settings(path: Path) -> LoggingSettings:
    """Read ``path``; a missing file yields the defaults.

    Unknown keys and bad values are reported and fall back to defaults.
    """

    if not path.exists():
        return LoggingSettings()

    values: dict[str, Any] = {}
    for line_no, key, value in _entries(path.read_text(encoding="utf-8")):
        if key == "retention_hours":
            values["retention_hours"] = _parse_retention(value, line_no)
        elif key in DESTINATIONS:
            values[f"{key}_level"] = _parse_level(key, value, line_no)
        else:
            logger.warning("logging settings line %d: unknown key %r", line_no, key)

    return LoggingSettings(**values)


__all__ = ["DESTINATIONS", "LEVEL_NAMES", "LoggingSettings", "parse_logging_settings"]
