"""Deterministic chat model used when no external LLM is configured."""

from __future__ import annotations

from nutribot.types import ChatRequest, ModelReply

NOT_FOUND_ANSWER = "I could not find anything about that in the book."


class ExtractiveChatModel:
    """Answers from retrieved context without calling an LLM.

    Keeps the `ChatModel` contract so the CLI works offline, where
    `OPENAI_API_KEY` is not set. It never requests tools.
    """

    def __init__(self, max_snippets: int = 3, snippet_chars: int = 280) -> None:
        self.max_snippets = max_snippets
        self.snippet_chars = snippet_chars

    def complete(self, request: ChatRequest) -> ModelReply:
        if not request.context:
            return ModelReply(text=NOT_FOUND_ANSWER)

        lines = ["Here is what the book says:"]
        for idx, hit in enumerate(request.context[: self.max_snippets], start=1):
            snippet = " ".join(hit.segment.text.split())
            if len(snippet) > self.snippet_chars:
                snippet = snippet[: self.snippet_chars - 3] + "..."
            lines.append(f"{idx}. {snippet} [{hit.segment.segment_id}]")
        return ModelReply(text="\n".join(lines))
