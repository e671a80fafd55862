"""End-to-end ingest pipeline: parse -> split -> embed and index."""

from __future__ import annotations

from pathlib import Path

import structlog

from nutribot.errors import IngestError
from nutribot.ingest.chunker import SentenceAwareChunker
from nutribot.ingest.parser import ParserRegistry
from nutribot.retrieval.index import EmbeddingIndex
from nutribot.types import Segment

logger = structlog.get_logger(__name__)


class IngestPipeline:
    """Coordinates parser, chunker and embedding index stages.

    Runs once at startup, before the first query.
    """

    def __init__(
        self,
        parser_registry: ParserRegistry,
        chunker: SentenceAwareChunker,
        index: EmbeddingIndex,
    ) -> None:
        self._parser_registry = parser_registry
        self._chunker = chunker
        self._index = index

    def ingest(self, path: str | Path, *, doc_id: str | None = None) -> list[Segment]:
        """Ingest a single source file and return its segments."""

        parsed = self._parser_registry.parse_path(path, doc_id=doc_id)
        segments = self._chunker.split(parsed)
        if not segments:
            raise IngestError(f"Document produced no segments: {path}")

        embedded = self._index.add(segments)
        logger.info(
            "document_ingested",
            doc_id=parsed.doc_id,
            pages=len(parsed.pages),
            segments=len(segments),
            embedded=embedded,
        )
        return segments
