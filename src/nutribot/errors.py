"""Error taxonomy shared by ingestion, retrieval, tools and the agent."""

from __future__ import annotations


class NutribotError(Exception):
    """Base class for all application errors."""


class ConfigError(NutribotError):
    """Configuration could not be loaded or validated."""


class IngestError(NutribotError):
    """The source document is missing, unreadable or empty."""


class EmbeddingError(NutribotError):
    """The embedding provider failed or returned inconsistent vectors."""


class ToolDiscoveryError(NutribotError):
    """A tool provider could not be reached while listing tools."""


class ToolInvocationError(NutribotError):
    """A single tool call failed."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name


class ToolLoopExceeded(NutribotError):
    """The model kept requesting tools past the configured hop limit."""

    def __init__(self, max_hops: int) -> None:
        super().__init__(f"Model requested tools more than {max_hops} times in one turn")
        self.max_hops = max_hops


class ModelProviderError(NutribotError):
    """The chat model could not be reached or rejected the request."""
