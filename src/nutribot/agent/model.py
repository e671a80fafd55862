"""Chat model interface and the LangChain-backed implementation."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Any, Protocol

import structlog
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from nutribot.agent.prompts import render_user_message
from nutribot.agent.registry import openai_tool_schema
from nutribot.errors import ModelProviderError
from nutribot.types import ChatRequest, ModelReply, Role, ToolCall, Turn

logger = structlog.get_logger(__name__)


class ChatModel(Protocol):
    """Anything that can answer a `ChatRequest` with text or tool calls."""

    def complete(self, request: ChatRequest) -> ModelReply:
        """Dispatch one request to the model."""


class LangChainChatModel:
    """Wraps a LangChain chat model (e.g. `ChatOpenAI`).

    Tool descriptors are bound per request with `bind_tools`; any exception
    raised by the provider is re-raised as `ModelProviderError`.
    """

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    def complete(self, request: ChatRequest) -> ModelReply:
        messages = to_messages(request)
        try:
            runnable = self.llm
            if request.tools:
                runnable = self.llm.bind_tools([openai_tool_schema(tool) for tool in request.tools])
            return to_reply(runnable.invoke(messages))
        except Exception as exc:
            logger.warning("model_call_failed", error=str(exc) or type(exc).__name__)
            raise ModelProviderError(f"Chat model request failed: {exc!r}") from exc


def to_messages(request: ChatRequest) -> list[BaseMessage]:
    """Render a request as system, history, augmented question, exchanges."""

    messages: list[BaseMessage] = [SystemMessage(content=request.system_prompt)]
    messages.extend(_to_message(turn) for turn in _drop_orphans(request.history))
    messages.append(
        HumanMessage(content=render_user_message(request.user_text, request.context))
    )
    messages.extend(_to_message(turn) for turn in request.exchanges)
    return messages


def to_reply(message: Any) -> ModelReply:
    tool_calls = tuple(
        ToolCall(
            call_id=str(call.get("id") or f"call_{uuid.uuid4().hex[:12]}"),
            name=str(call["name"]),
            arguments=dict(call.get("args") or {}),
        )
        for call in getattr(message, "tool_calls", None) or []
    )
    return ModelReply(text=_content_text(getattr(message, "content", message)), tool_calls=tool_calls)


def _drop_orphans(history: Sequence[Turn]) -> list[Turn]:
    # An evicted window can start mid tool exchange; providers reject tool
    # messages without the assistant call that produced them.
    for i, turn in enumerate(history):
        if turn.role is Role.USER:
            return list(history[i:])
    return []


def _to_message(turn: Turn) -> BaseMessage:
    if turn.role is Role.USER:
        return HumanMessage(content=turn.content)
    if turn.role is Role.TOOL:
        return ToolMessage(content=turn.content, tool_call_id=turn.tool_call_id or "", name=turn.name)
    return AIMessage(
        content=turn.content,
        tool_calls=[
            {"name": call.name, "args": call.arguments, "id": call.call_id, "type": "tool_call"}
            for call in turn.tool_calls
        ],
    )


def _content_text(content: Any) -> str:
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)


def create_openai_chat_model(
    model: str,
    *,
    api_key: str,
    temperature: float,
    timeout: float,
    max_retries: int,
) -> LangChainChatModel:
    from langchain_openai import ChatOpenAI

    return LangChainChatModel(
        ChatOpenAI(
            model=model,
            api_key=api_key,
            temperature=temperature,
            timeout=timeout,
            max_retries=max_retries,
        )
    )
