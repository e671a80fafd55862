"""Sentence-aware token-window splitting."""

from __future__ import annotations

import re
from bisect import bisect_left

from nutribot.config import ChunkingConfig
from nutribot.types import ParsedDocument, Segment

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)
_BOUNDARY_CHARS = ".!?\n"


class SentenceAwareChunker:
    """Splits each page into windows of at most `max_tokens` tokens.

    A token is a run of word characters or a single punctuation mark, so every
    non-whitespace character of the source belongs to exactly one token. Each
    window covers the next `max_tokens` tokens; when it is not the last window
    of the page it is cut back to the last sentence boundary (`.`, `!`, `?` or
    a newline) found beyond `min_chunk_chars` characters. Without such a
    boundary the window is cut at the hard token limit.

    Segments are contiguous slices of the page text, so joining them gives
    back the original text up to whitespace.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def split(self, document: ParsedDocument) -> list[Segment]:
        """Split a parsed document into ordered segments.

        Pages are split independently; `position` and the id suffix count
        across the whole document.
        """

        segments: list[Segment] = []
        for page_number, page_text in enumerate(document.pages, start=1):
            for text, token_count in self._split_text(page_text):
                position = len(segments)
                segments.append(
                    Segment(
                        segment_id=f"{document.doc_id}-chunk-{position:04d}",
                        doc_id=document.doc_id,
                        text=text,
                        position=position,
                        token_count=token_count,
                        metadata={
                            **document.metadata,
                            "page_number": page_number,
                            "chunk_index": position,
                        },
                    )
                )
        return segments

    def _split_text(self, text: str) -> list[tuple[str, int]]:
        spans = [match.span() for match in _TOKEN_PATTERN.finditer(text)]
        starts = [span[0] for span in spans]
        max_tokens = self.config.max_tokens
        pieces: list[tuple[str, int]] = []

        start = 0
        while start < len(spans):
            end = min(start + max_tokens, len(spans))
            char_start = spans[start][0]
            char_end = spans[end - 1][1]

            if end < len(spans):
                cut = self._sentence_cut(text, char_start, char_end)
                if cut is not None:
                    char_end = cut
                    end = bisect_left(starts, cut, lo=start + 1, hi=end)

            piece = text[char_start:char_end].strip()
            if piece:
                pieces.append((piece, end - start))
            start = end

        return pieces

    def _sentence_cut(self, text: str, char_start: int, char_end: int) -> int | None:
        window = text[char_start:char_end]
        boundary = max(window.rfind(char) for char in _BOUNDARY_CHARS)
        if boundary > self.config.min_chunk_chars:
            return char_start + boundary + 1
        return None

    @staticmethod
    def tokenize(text: str) -> list[str]:
        return _TOKEN_PATTERN.findall(text)
