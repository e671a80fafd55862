"""Per-turn orchestration: retrieval, model dispatch and tool relaying."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import structlog

from nutribot.agent.memory import ConversationMemory
from nutribot.agent.model import ChatModel
from nutribot.agent.prompts import build_request
from nutribot.agent.registry import ToolRegistry
from nutribot.config import AgentConfig, RetrievalConfig
from nutribot.errors import EmbeddingError, ToolInvocationError, ToolLoopExceeded
from nutribot.obs.tracing import Timer, TurnTrace, estimate_token_count
from nutribot.retrieval.index import EmbeddingIndex
from nutribot.types import ChatRequest, ScoredSegment, ToolCall, ToolTrace, Turn

logger = structlog.get_logger(__name__)


class AgentState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model_response"
    AWAITING_TOOL = "awaiting_tool_result"
    DONE = "done"


@dataclass(slots=True)
class AgentReply:
    """Final answer of one user turn plus what produced it."""

    text: str
    context: list[ScoredSegment]
    request: ChatRequest
    hops: int = 0
    context_degraded: bool = False
    tool_traces: list[ToolTrace] = field(default_factory=list)
    trace: TurnTrace | None = None


class ChatAgent:
    """Runs one user turn through retrieval, the model and any tool calls.

    Retrieval happens once per user turn; tool hops reuse the same context.
    Every model round that asks for tools counts as one hop, and a reply that
    asks for tools after `max_tool_hops` hops raises `ToolLoopExceeded`.
    """

    def __init__(
        self,
        *,
        model: ChatModel,
        index: EmbeddingIndex,
        memory: ConversationMemory,
        tool_registry: ToolRegistry,
        config: AgentConfig | None = None,
        retrieval: RetrievalConfig | None = None,
    ) -> None:
        self.model = model
        self.index = index
        self.memory = memory
        self.tool_registry = tool_registry
        self.config = config or AgentConfig()
        self.retrieval = retrieval or RetrievalConfig()
        self.state = AgentState.IDLE

    def respond(self, user_text: str) -> AgentReply:
        observed_tools: list[ToolTrace] = []
        self.tool_registry.set_observer(observed_tools.append)
        try:
            with Timer() as timer:
                reply = self._run_turn(user_text, observed_tools)
        finally:
            self.tool_registry.set_observer(None)
            self._transition(AgentState.IDLE)

        reply.trace = TurnTrace(
            question=user_text,
            answer=reply.text,
            segment_ids=[hit.segment.segment_id for hit in reply.context],
            tool_traces=observed_tools,
            hops=reply.hops,
            input_tokens=estimate_token_count(user_text),
            output_tokens=estimate_token_count(reply.text),
            latency_ms=timer.elapsed_ms,
        )
        logger.info(
            "turn_completed",
            hops=reply.hops,
            segments=reply.trace.segment_ids,
            context_degraded=reply.context_degraded,
            latency_ms=round(timer.elapsed_ms, 2),
        )
        return reply

    def _run_turn(self, user_text: str, observed_tools: list[ToolTrace]) -> AgentReply:
        context, degraded = self._retrieve(user_text)
        request = build_request(
            system_prompt=self.config.system_prompt,
            history=self.memory.window(),
            user_text=user_text,
            context=context,
            tools=self.tool_registry.descriptors(),
        )
        self.memory.append(Turn.user(user_text))

        hops = 0
        while True:
            self._transition(AgentState.AWAITING_MODEL)
            model_reply = self.model.complete(request)

            if not model_reply.wants_tools:
                self.memory.append(Turn.assistant(model_reply.text))
                self._transition(AgentState.DONE)
                return AgentReply(
                    text=model_reply.text,
                    context=context,
                    request=request,
                    hops=hops,
                    context_degraded=degraded,
                    tool_traces=observed_tools,
                )

            if hops >= self.config.max_tool_hops:
                logger.warning("tool_loop_exceeded", max_hops=self.config.max_tool_hops)
                raise ToolLoopExceeded(self.config.max_tool_hops)
            hops += 1

            self._transition(AgentState.AWAITING_TOOL)
            call_turn = Turn.assistant(model_reply.text, model_reply.tool_calls)
            result_turns = [self._call_tool(call) for call in model_reply.tool_calls]
            self.memory.extend([call_turn, *result_turns])
            request = request.with_exchanges(call_turn, *result_turns)

    def _retrieve(self, user_text: str) -> tuple[list[ScoredSegment], bool]:
        try:
            return self.index.query(user_text, self.retrieval.top_k), False
        except EmbeddingError as exc:
            logger.warning("retrieval_degraded", error=str(exc))
            return [], True

    def _call_tool(self, call: ToolCall) -> Turn:
        try:
            result = self.tool_registry.invoke(call.name, call.arguments)
        except ToolInvocationError as exc:
            result = f"ERROR: {exc}"
        return Turn.tool(call, result)

    def _transition(self, state: AgentState) -> None:
        if state is not self.state:
            logger.debug("agent_transition", from_state=self.state.value, to_state=state.value)
        self.state = state
