"""Bounded in-process conversation window."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from nutribot.config import MemoryConfig
from nutribot.obs.tracing import estimate_token_count
from nutribot.types import Turn


class ConversationMemory:
    """Keeps the most recent turns, evicting the oldest first.

    The window is bounded by `max_turns` and, when set, by `max_tokens`
    (estimated over turn contents). A single turn larger than the token
    budget is evicted as well, leaving the window empty.
    """

    def __init__(self, config: MemoryConfig | None = None) -> None:
        self.config = config or MemoryConfig()
        self._turns: deque[Turn] = deque()
        self._token_total = 0

    def __len__(self) -> int:
        return len(self._turns)

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)
        self._token_total += estimate_token_count(turn.content)
        self._evict()

    def extend(self, turns: Iterable[Turn]) -> None:
        for turn in turns:
            self.append(turn)

    def window(self) -> list[Turn]:
        return list(self._turns)

    def clear(self) -> None:
        self._turns.clear()
        self._token_total = 0

    def _evict(self) -> None:
        while len(self._turns) > self.config.max_turns:
            self._pop_oldest()
        budget = self.config.max_tokens
        if budget is None:
            return
        while self._turns and self._token_total > budget:
            self._pop_oldest()

    def _pop_oldest(self) -> None:
        turn = self._turns.popleft()
        self._token_total -= estimate_token_count(turn.content)
