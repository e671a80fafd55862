"""Shared domain models."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from hashlib import sha1
from typing import Any


@dataclass(slots=True)
class ParsedDocument:
    """A parsed source document before splitting, one text entry per page."""

    doc_id: str
    pages: list[str]
    metadata: dict[str, Any]


@dataclass(slots=True, frozen=True)
class Segment:
    """A bounded-size slice of a source document."""

    segment_id: str
    doc_id: str
    text: str
    position: int
    token_count: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def fingerprint(self) -> str:
        return sha1(self.text.encode("utf-8")).hexdigest()


@dataclass(slots=True, frozen=True)
class EmbeddingRecord:
    """Vector stored for exactly one segment."""

    segment_id: str
    vector: tuple[float, ...]
    dimension: int


@dataclass(slots=True)
class ScoredSegment:
    """A retrieval result with its similarity score."""

    segment: Segment
    score: float
    rank: int = 0


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A model-initiated request to run one tool."""

    call_id: str
    name: str
    arguments: dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class Turn:
    """One conversation message; never mutated after creation."""

    role: Role
    content: str
    created_at: datetime = field(default_factory=_utcnow)
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: tuple[ToolCall, ...] = ()) -> "Turn":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls)

    @classmethod
    def tool(cls, call: ToolCall, content: str) -> "Turn":
        return cls(
            role=Role.TOOL,
            content=content,
            tool_call_id=call.call_id,
            name=call.name,
        )


@dataclass(slots=True, frozen=True)
class ToolDescriptor:
    """A discovered callable tool: name, JSON input schema and invocation handle."""

    name: str
    description: str
    input_schema: dict[str, Any]
    handle: Callable[[dict[str, Any]], Any] = field(repr=False, compare=False)


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    error: str | None = None


@dataclass(slots=True, frozen=True)
class ModelReply:
    """Outcome of one model dispatch: final text or tool-call requests."""

    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


@dataclass(slots=True, frozen=True)
class ChatRequest:
    """Everything sent to the model for one dispatch of a user turn."""

    system_prompt: str
    history: tuple[Turn, ...]
    user_text: str
    context: tuple[ScoredSegment, ...] = ()
    tools: tuple[ToolDescriptor, ...] = ()
    exchanges: tuple[Turn, ...] = ()

    def with_exchanges(self, *turns: Turn) -> "ChatRequest":
        return replace(self, exchanges=self.exchanges + turns)
