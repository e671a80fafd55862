"""Embedding abstractions, a deterministic baseline and a LangChain adapter."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

import structlog

from nutribot.errors import EmbeddingError

logger = structlog.get_logger(__name__)

_WORD_PATTERN = re.compile(r"\w+", flags=re.UNICODE)


class Embedder(ABC):
    """Embedder interface used by the index at ingest and query time."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class HashingEmbedder(Embedder):
    """Deterministic feature-hashing embedding without external model calls.

    Used offline (no API key) and in tests. Words are lower-cased and hashed
    into `dimension` signed buckets; vectors are L2-normalized.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = [token.lower() for token in _WORD_PATTERN.findall(text)]
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class LangChainEmbedder(Embedder):
    """Adapts a `langchain_core.embeddings.Embeddings` provider.

    Any provider exception (network, auth, quota) is re-raised as
    `EmbeddingError` with the original exception chained.
    """

    def __init__(self, embeddings: Any) -> None:
        self._embeddings = embeddings

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        try:
            return [list(vector) for vector in self._embeddings.embed_documents(texts)]
        except Exception as exc:
            logger.warning("embedding_failed", operation="documents", count=len(texts), error=str(exc))
            raise EmbeddingError(f"Embedding provider failed: {exc}") from exc

    def embed_query(self, text: str) -> list[float]:
        try:
            return list(self._embeddings.embed_query(text))
        except Exception as exc:
            logger.warning("embedding_failed", operation="query", error=str(exc))
            raise EmbeddingError(f"Embedding provider failed: {exc}") from exc


def create_openai_embedder(model: str, *, api_key: str, timeout: float, max_retries: int) -> Embedder:
    from langchain_openai import OpenAIEmbeddings

    return LangChainEmbedder(
        OpenAIEmbeddings(model=model, api_key=api_key, timeout=timeout, max_retries=max_retries)
    )
