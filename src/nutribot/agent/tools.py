"""Built-in tools exposed alongside externally discovered ones."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from nutribot.agent.registry import LocalToolProvider, ToolSpec
from nutribot.retrieval.index import EmbeddingIndex


class SearchToolInput(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=4, ge=1, le=10)


class SummarizeToolInput(BaseModel):
    text: str = Field(min_length=1)
    max_sentences: int = Field(default=3, ge=1, le=10)


def build_builtin_provider(index: EmbeddingIndex) -> LocalToolProvider:
    """Create the default in-process tool set.

    Tools:
    - `search_document`: look up more passages of the book, with citations.
    - `summarize_text`: keep the first sentences of a passage.
    """

    def _search(input_data: SearchToolInput) -> str:
        hits = index.query(input_data.query, input_data.top_k)
        lines = []
        for hit in hits:
            snippet = _truncate(hit.segment.text.replace("\n", " "), 220)
            lines.append(f"[{hit.segment.segment_id}] score={hit.score:.4f} {snippet}")
        if not lines:
            return "NO_RESULTS"
        return "\n".join(lines)

    def _summarize(input_data: SummarizeToolInput) -> str:
        sentences = [
            part.strip()
            for part in re.split(r"(?<=[.!?])\s+", input_data.text)
            if part.strip()
        ]
        return " ".join(sentences[: input_data.max_sentences])

    return LocalToolProvider(
        [
            ToolSpec(
                name="search_document",
                description="Search the indexed book and return cited passages.",
                args_schema=SearchToolInput,
                handler=_search,
                tags=["retrieval"],
            ),
            ToolSpec(
                name="summarize_text",
                description="Summarize a text passage.",
                args_schema=SummarizeToolInput,
                handler=_summarize,
                tags=["nlp"],
            ),
        ]
    )


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
