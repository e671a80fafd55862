"""Startup wiring: ingest the book, discover tools, build the agent."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from nutribot.agent.fallback import ExtractiveChatModel
from nutribot.agent.mcp_tools import build_mcp_providers
from nutribot.agent.memory import ConversationMemory
from nutribot.agent.model import ChatModel, create_openai_chat_model
from nutribot.agent.planner import ChatAgent
from nutribot.agent.registry import ImportedToolProvider, ToolProvider, ToolRegistry
from nutribot.agent.tools import build_builtin_provider
from nutribot.config import AppConfig, ModelConfig
from nutribot.ingest.chunker import SentenceAwareChunker
from nutribot.ingest.embedder import Embedder, HashingEmbedder, create_openai_embedder
from nutribot.ingest.parser import ParserRegistry
from nutribot.ingest.pipeline import IngestPipeline
from nutribot.retrieval.index import EmbeddingIndex
from nutribot.types import Segment

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class ChatApplication:
    """Objects built once per process and shared by the interactive loop."""

    config: AppConfig
    agent: ChatAgent
    index: EmbeddingIndex
    tool_registry: ToolRegistry
    segments: list[Segment]

    def close(self) -> None:
        self.tool_registry.close()


def create_embedder(config: ModelConfig) -> Embedder:
    if not config.api_key:
        logger.warning("embedder_fallback", reason="OPENAI_API_KEY not set", embedder="hashing")
        return HashingEmbedder()
    return create_openai_embedder(
        config.embedding_model,
        api_key=config.api_key,
        timeout=config.timeout_seconds,
        max_retries=config.max_retries,
    )


def create_chat_model(config: ModelConfig) -> ChatModel:
    if not config.api_key:
        logger.warning("chat_model_fallback", reason="OPENAI_API_KEY not set", model="extractive")
        return ExtractiveChatModel()
    return create_openai_chat_model(
        config.chat_model,
        api_key=config.api_key,
        temperature=config.temperature,
        timeout=config.timeout_seconds,
        max_retries=config.max_retries,
    )


def default_tool_providers(config: AppConfig, index: EmbeddingIndex) -> list[ToolProvider]:
    providers: list[ToolProvider] = []
    if config.tools.include_builtin:
        providers.append(build_builtin_provider(index))
    providers.extend(ImportedToolProvider(target) for target in config.tools.providers)
    providers.extend(
        build_mcp_providers(config.tools.mcp_servers, timeout_seconds=config.tools.timeout_seconds)
    )
    return providers


def build_application(
    config: AppConfig,
    *,
    chat_model: ChatModel | None = None,
    embedder: Embedder | None = None,
    tool_providers: Sequence[ToolProvider] | None = None,
) -> ChatApplication:
    """Ingest the configured document and assemble the agent.

    Raises `IngestError` or `EmbeddingError` when the document cannot be
    indexed; tool discovery failures are soft and only logged.
    """

    index = EmbeddingIndex(
        embedder or create_embedder(config.model),
        similarity_threshold=config.retrieval.similarity_threshold,
    )
    pipeline = IngestPipeline(ParserRegistry(), SentenceAwareChunker(config.chunking), index)
    segments = pipeline.ingest(config.document_path)

    registry = ToolRegistry(timeout_seconds=config.tools.timeout_seconds)
    providers = (
        list(tool_providers)
        if tool_providers is not None
        else default_tool_providers(config, index)
    )
    registry.discover(providers)

    agent = ChatAgent(
        model=chat_model or create_chat_model(config.model),
        index=index,
        memory=ConversationMemory(config.memory),
        tool_registry=registry,
        config=config.agent,
        retrieval=config.retrieval,
    )
    return ChatApplication(
        config=config,
        agent=agent,
        index=index,
        tool_registry=registry,
        segments=segments,
    )
