import pytest

from nutribot.config import ChunkingConfig
from nutribot.errors import IngestError
from nutribot.ingest.chunker import SentenceAwareChunker
from nutribot.ingest.embedder import HashingEmbedder
from nutribot.ingest.parser import ParserRegistry
from nutribot.ingest.pipeline import IngestPipeline
from nutribot.retrieval.index import EmbeddingIndex


def _pipeline() -> tuple[IngestPipeline, EmbeddingIndex]:
    index = EmbeddingIndex(HashingEmbedder())
    chunker = SentenceAwareChunker(ChunkingConfig(max_tokens=20, min_chunk_chars=10))
    return IngestPipeline(ParserRegistry(), chunker, index), index


def test_ingest_indexes_every_segment(tmp_path) -> None:
    path = tmp_path / "book.txt"
    path.write_text(
        "Traditional diets include organ meats. Fermented foods support digestion.\f"
        "Vitamin D comes from sunlight. Fat-soluble vitamins need dietary fat.",
        encoding="utf-8",
    )
    pipeline, index = _pipeline()

    segments = pipeline.ingest(path)

    assert len(index) == len(segments) >= 2
    assert {segment.metadata["page_number"] for segment in segments} == {1, 2}


def test_re_ingesting_the_same_document_is_idempotent(tmp_path) -> None:
    path = tmp_path / "book.txt"
    path.write_text("Sugar damages collagen. Sleep restores hormones.", encoding="utf-8")
    pipeline, index = _pipeline()

    first = pipeline.ingest(path)
    second = pipeline.ingest(path)

    assert first == second
    assert len(index) == len(first)


def test_unreadable_document_is_fatal(tmp_path) -> None:
    path = tmp_path / "book.pdf"
    path.write_bytes(b"%PDF-1.4 truncated")
    pipeline, index = _pipeline()

    with pytest.raises(IngestError):
        pipeline.ingest(path)
    assert len(index) == 0
