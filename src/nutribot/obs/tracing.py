"""Turn timing and token accounting."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field

from nutribot.types import ToolTrace

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class TurnTrace:
    """Summary of one agent round, logged when the turn completes."""

    question: str
    answer: str
    segment_ids: list[str]
    tool_traces: list[ToolTrace] = field(default_factory=list)
    hops: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: float = 0.0


class Timer:
    """Simple context timer used by the agent."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
