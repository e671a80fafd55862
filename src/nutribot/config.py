"""Configuration models and environment loading."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from importlib import resources
from pathlib import Path
from typing import Any, Literal

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, Field, ValidationError

from nutribot.agent.prompts import SYSTEM_PROMPT
from nutribot.errors import ConfigError

BUNDLED_DOCUMENT = "deep_nutrition.txt"


def bundled_document_path() -> Path:
    """Location of the sample book shipped inside the package."""
    return Path(str(resources.files("nutribot") / "data" / BUNDLED_DOCUMENT))


class ChunkingConfig(BaseModel):
    """Configures sentence-aware token-window splitting."""

    max_tokens: int = Field(default=800, ge=1)
    min_chunk_chars: int = Field(default=350, ge=0)


class RetrievalConfig(BaseModel):
    """Configures per-turn context retrieval."""

    top_k: int = Field(default=4, ge=0)
    similarity_threshold: float | None = Field(default=None, ge=-1.0, le=1.0)


class MemoryConfig(BaseModel):
    """Bounds of the conversation window."""

    max_turns: int = Field(default=20, ge=1)
    max_tokens: int | None = Field(default=None, ge=1)


class AgentConfig(BaseModel):
    """Configures agent execution."""

    max_tool_hops: int = Field(default=6, ge=0)
    system_prompt: str = SYSTEM_PROMPT


class McpServerConfig(BaseModel):
    """One MCP server launched over stdio."""

    name: str
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] | None = None


class ToolConfig(BaseModel):
    """Configures tool discovery and invocation."""

    providers: list[str] = Field(default_factory=list)
    mcp_servers: list[McpServerConfig] = Field(default_factory=list)
    include_builtin: bool = True
    timeout_seconds: float | None = Field(default=30.0, gt=0.0)


class ModelConfig(BaseModel):
    """Chat and embedding provider settings."""

    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    timeout_seconds: float = Field(default=60.0, gt=0.0)
    max_retries: int = Field(default=2, ge=0)
    api_key: str | None = Field(default=None, repr=False)


class LoggingConfig(BaseModel):
    """Log level and renderer for the stderr log stream."""

    level: str = "WARNING"
    format: Literal["console", "json"] = "console"


class AppConfig(BaseModel):
    """Root configuration for one chat session."""

    document_path: Path = Field(default_factory=bundled_document_path)
    banner: str = "I am your assistant who is expert in nutrition."
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    tools: ToolConfig = Field(default_factory=ToolConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# Environment variable -> path inside AppConfig.
_ENV_FIELDS: dict[str, tuple[str, ...]] = {
    "NUTRIBOT_DOCUMENT_PATH": ("document_path",),
    "NUTRIBOT_BANNER": ("banner",),
    "NUTRIBOT_CHUNK_MAX_TOKENS": ("chunking", "max_tokens"),
    "NUTRIBOT_CHUNK_MIN_CHARS": ("chunking", "min_chunk_chars"),
    "NUTRIBOT_TOP_K": ("retrieval", "top_k"),
    "NUTRIBOT_SIMILARITY_THRESHOLD": ("retrieval", "similarity_threshold"),
    "NUTRIBOT_MEMORY_MAX_TURNS": ("memory", "max_turns"),
    "NUTRIBOT_MEMORY_MAX_TOKENS": ("memory", "max_tokens"),
    "NUTRIBOT_MAX_TOOL_HOPS": ("agent", "max_tool_hops"),
    "NUTRIBOT_SYSTEM_PROMPT": ("agent", "system_prompt"),
    "NUTRIBOT_TOOL_PROVIDERS": ("tools", "providers"),
    "NUTRIBOT_MCP_CONFIG": ("tools", "mcp_servers"),
    "NUTRIBOT_BUILTIN_TOOLS": ("tools", "include_builtin"),
    "NUTRIBOT_TOOL_TIMEOUT": ("tools", "timeout_seconds"),
    "OPENAI_API_KEY": ("model", "api_key"),
    "OPENAI_MODEL": ("model", "chat_model"),
    "OPENAI_EMBEDDING_MODEL": ("model", "embedding_model"),
    "NUTRIBOT_TEMPERATURE": ("model", "temperature"),
    "NUTRIBOT_MODEL_TIMEOUT": ("model", "timeout_seconds"),
    "NUTRIBOT_MODEL_MAX_RETRIES": ("model", "max_retries"),
    "NUTRIBOT_LOG_LEVEL": ("logging", "level"),
    "NUTRIBOT_LOG_FORMAT": ("logging", "format"),
}


def load_config(
    env_file: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Build an `AppConfig` from a `.env` file and environment variables.

    Process environment values win over `.env` values. Unset or empty
    variables keep the model defaults.
    """

    dotenv_path = str(env_file) if env_file is not None else find_dotenv(usecwd=True)
    values: dict[str, Any] = {}
    if dotenv_path:
        values.update({k: v for k, v in dotenv_values(dotenv_path).items() if v is not None})
    values.update(os.environ if environ is None else environ)

    data: dict[str, Any] = {}
    for env_name, path in _ENV_FIELDS.items():
        raw = values.get(env_name)
        if raw is None or raw == "":
            continue
        value: Any = raw
        if path == ("tools", "providers"):
            value = [item.strip() for item in raw.split(",") if item.strip()]
        elif path == ("tools", "mcp_servers"):
            value = read_mcp_servers(raw)
        section = data
        for key in path[:-1]:
            section = section.setdefault(key, {})
        section[path[-1]] = value

    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def read_mcp_servers(path: str | Path) -> list[dict[str, Any]]:
    """Read MCP server entries from a JSON file.

    The file uses the common `{"mcpServers": {"<name>": {"command": ...,
    "args": [...], "env": {...}}}}` layout; entries are returned in file order
    with their name filled in.
    """

    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot read MCP server configuration {path}: {exc}") from exc

    servers = payload.get("mcpServers") if isinstance(payload, dict) else None
    if not isinstance(servers, dict):
        raise ConfigError(f"{path} has no 'mcpServers' object")
    entries: list[dict[str, Any]] = []
    for name, entry in servers.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"MCP server {name!r} in {path} must be an object")
        entries.append({"name": name, **entry})
    return entries
