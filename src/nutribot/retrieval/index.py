"""In-process embedding index with cosine-similarity retrieval."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from math import sqrt

import structlog

from nutribot.errors import EmbeddingError
from nutribot.ingest.embedder import Embedder
from nutribot.types import EmbeddingRecord, ScoredSegment, Segment

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class _StoredSegment:
    segment: Segment
    record: EmbeddingRecord
    fingerprint: str
    order: int


class EmbeddingIndex:
    """Stores segments with their vectors and answers top-k queries.

    Segments are keyed by `segment_id`: re-adding an unchanged segment is a
    no-op and a changed one is re-embedded in place, so ingesting the same
    document twice does not duplicate entries. All vectors share one
    dimension, fixed by the first vector stored.
    """

    def __init__(self, embedder: Embedder, *, similarity_threshold: float | None = None) -> None:
        self.embedder = embedder
        self.similarity_threshold = similarity_threshold
        self._store: dict[str, _StoredSegment] = {}
        self._dimension: int | None = None
        self._next_order = 0

    def __len__(self) -> int:
        return len(self._store)

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def records(self) -> list[EmbeddingRecord]:
        return [stored.record for stored in self._ordered()]

    def add(self, segments: Iterable[Segment]) -> int:
        """Embed and store segments; returns how many were (re)embedded."""

        pending = [
            segment
            for segment in segments
            if not self._is_current(segment)
        ]
        if not pending:
            return 0

        vectors = self.embedder.embed_documents([segment.text for segment in pending])
        if len(vectors) != len(pending):
            raise EmbeddingError(
                f"Embedding provider returned {len(vectors)} vectors for {len(pending)} segments"
            )

        self._dimension = self._check_dimensions(vectors)
        for segment, vector in zip(pending, vectors, strict=True):
            existing = self._store.get(segment.segment_id)
            order = existing.order if existing is not None else self._take_order()
            self._store[segment.segment_id] = _StoredSegment(
                segment=segment,
                record=EmbeddingRecord(
                    segment_id=segment.segment_id,
                    vector=tuple(vector),
                    dimension=len(vector),
                ),
                fingerprint=segment.fingerprint(),
                order=order,
            )

        logger.info("segments_indexed", added=len(pending), total=len(self._store))
        return len(pending)

    def query(self, text: str, k: int) -> list[ScoredSegment]:
        """Return the `k` most similar segments, best first.

        Ties keep original segment order. An empty index returns an empty list
        without calling the embedder; embedder failures propagate as
        `EmbeddingError`.
        """

        if k <= 0 or not self._store:
            return []

        query_vector = self.embedder.embed_query(text)
        if len(query_vector) != self._dimension:
            raise EmbeddingError(
                f"Query embedding has dimension {len(query_vector)}, index uses {self._dimension}"
            )

        scored = [
            (_cosine_similarity(query_vector, stored.record.vector), stored)
            for stored in self._store.values()
        ]
        if self.similarity_threshold is not None:
            scored = [item for item in scored if item[0] >= self.similarity_threshold]
        ranked = sorted(scored, key=lambda item: (-item[0], item[1].order))
        return [
            ScoredSegment(segment=stored.segment, score=score, rank=i + 1)
            for i, (score, stored) in enumerate(ranked[:k])
        ]

    def _is_current(self, segment: Segment) -> bool:
        stored = self._store.get(segment.segment_id)
        return stored is not None and stored.fingerprint == segment.fingerprint()

    def _check_dimensions(self, vectors: list[list[float]]) -> int:
        expected = self._dimension if self._dimension is not None else len(vectors[0])
        if expected == 0:
            raise EmbeddingError("Embedding provider returned an empty vector")
        for vector in vectors:
            if len(vector) != expected:
                raise EmbeddingError(
                    f"Embedding dimension {len(vector)} does not match index dimension {expected}"
                )
        return expected

    def _take_order(self) -> int:
        order = self._next_order
        self._next_order += 1
        return order

    def _ordered(self) -> list[_StoredSegment]:
        return sorted(self._store.values(), key=lambda stored: stored.order)


def _cosine_similarity(a: list[float] | tuple[float, ...], b: tuple[float, ...]) -> float:
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
