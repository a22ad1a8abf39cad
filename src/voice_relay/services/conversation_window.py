"""Bounded history of recent turns used to build generation prompts."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterator, Literal

Role = Literal["user", "assistant"]

DEFAULT_MAX_TURNS = 10

_ROLE_LABELS: dict[str, str] = {"user": "User", "assistant": "Assistant"}


@dataclass(frozen=True, slots=True)
class Turn:
    """A single utterance stored in the window."""

    role: Role
    text: str

    def render(self) -> str:
        return f"{_ROLE_LABELS[self.role]}: {self.text}"


class ConversationWindow:
    """Sliding window over the most recent turns of one session.

    Appending beyond ``max_turns`` drops the oldest turns first. Empty text is
    ignored so a blank transcript never displaces real history.
    """

    def __init__(self, max_turns: int = DEFAULT_MAX_TURNS) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self._max_turns = max_turns
        self._turns: deque[Turn] = deque()

    @property
    def max_turns(self) -> int:
        return self._max_turns

    def append(self, role: Role, text: str) -> bool:
        """Push a turn, evicting from the front past the bound.

        Returns ``False`` when the text was empty and nothing was recorded.
        """

        if role not in _ROLE_LABELS:
            raise ValueError(f"Unknown role: {role!r}")
        if not text or not text.strip():
            return False
        self._turns.append(Turn(role=role, text=text))
        while len(self._turns) > self._max_turns:
            self._turns.popleft()
        return True

    def clear(self) -> None:
        self._turns.clear()

    def turns(self) -> list[Turn]:
        """Return a snapshot of the current turns, oldest first."""

        return list(self._turns)

    def lines(self) -> Iterator[str]:
        """Yield ``"Role: text"`` lines, most recent last."""

        for turn in self._turns:
            yield turn.render()

    def render(self) -> str:
        return "\n".join(self.lines())

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)

    def __getitem__(self, index: int) -> Turn:
        return self._turns[index]

    def __repr__(self) -> str:
        return f"ConversationWindow(turns={len(self._turns)}, max_turns={self._max_turns})"


__all__ = ["ConversationWindow", "DEFAULT_MAX_TURNS", "Role", "Turn"]
