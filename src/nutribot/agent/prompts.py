"""System prompt and per-turn request assembly."""

from __future__ import annotations

from collections.abc import Sequence

from nutribot.types import ChatRequest, ScoredSegment, ToolDescriptor, Turn

SYSTEM_PROMPT = """
You are a helpful and knowledgeable nutrition assistant with deep expertise in the book *Deep Nutrition* by Dr. Cate Shanahan.

Rules:
1) Base your answers primarily on this book. When you give advice or information, clearly refer to the relevant concepts or ideas from the book.
2) You have access to external tools. Invoke any available tool when it helps answer the user's question.
3) Always respond in a clear, friendly and informative way.
""".strip()

CONTEXT_SEPARATOR = "---------------------"

_CONTEXT_TEMPLATE = """{question}

Context information is below, surrounded by {sep}

{sep}
{context}
{sep}

Given the context and provided history information and not prior knowledge,
reply to the user comment. If the answer is not in the context, inform
the user that you can't answer the question."""


def render_user_message(user_text: str, context: Sequence[ScoredSegment]) -> str:
    """Append retrieved segments below the user's question."""

    if not context:
        return user_text
    body = "\n".join(hit.segment.text for hit in context)
    return _CONTEXT_TEMPLATE.format(question=user_text, context=body, sep=CONTEXT_SEPARATOR)


def build_request(
    *,
    system_prompt: str,
    history: Sequence[Turn],
    user_text: str,
    context: Sequence[ScoredSegment],
    tools: Sequence[ToolDescriptor],
) -> ChatRequest:
    return ChatRequest(
        system_prompt=system_prompt,
        history=tuple(history),
        user_text=user_text,
        context=tuple(context),
        tools=tuple(tools),
    )
