"""Tool providers and the session tool registry."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from functools import partial
from importlib import import_module
from time import perf_counter
from typing import Any, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nutribot.errors import ToolDiscoveryError, ToolInvocationError
from nutribot.types import ToolDescriptor, ToolTrace

logger = structlog.get_logger(__name__)


@runtime_checkable
class ToolProvider(Protocol):
    """A source of callable tools, local or behind some transport."""

    def list_tools(self) -> list[ToolDescriptor]:
        """Describe every tool this provider exposes."""

    def call(self, name: str, arguments: dict[str, Any]) -> Any:
        """Run one tool and return its result."""


class ToolSpec(BaseModel):
    """Declarative in-process tool backed by a Pydantic argument model."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], Any]
    tags: list[str] = Field(default_factory=list)

    def invoke(self, payload: dict[str, Any]) -> Any:
        data = self.args_schema.model_validate(payload)
        return self.handler(data)


class LocalToolProvider:
    """Exposes `ToolSpec`s living in this process."""

    def __init__(self, specs: Iterable[ToolSpec] = ()) -> None:
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            self.add(spec)

    def add(self, spec: ToolSpec) -> None:
        if spec.name in self._specs:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._specs[spec.name] = spec

    def list_tools(self) -> list[ToolDescriptor]:
        return [
            ToolDescriptor(
                name=spec.name,
                description=spec.description,
                input_schema=spec.args_schema.model_json_schema(),
                handle=partial(self.call, spec.name),
            )
            for spec in self._specs.values()
        ]

    def call(self, name: str, arguments: dict[str, Any]) -> Any:
        spec = self._specs.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return spec.invoke(arguments)


class ImportedToolProvider:
    """Provider created by an external `package.module:factory` callable.

    The factory is imported and called on the first `list_tools()`; it must
    return an object implementing `ToolProvider`.
    """

    def __init__(self, target: str) -> None:
        self.target = target
        self._provider: ToolProvider | None = None

    def list_tools(self) -> list[ToolDescriptor]:
        return self._resolve().list_tools()

    def call(self, name: str, arguments: dict[str, Any]) -> Any:
        return self._resolve().call(name, arguments)

    def _resolve(self) -> ToolProvider:
        if self._provider is not None:
            return self._provider

        module_name, _, attr = self.target.partition(":")
        if not module_name or not attr:
            raise ToolDiscoveryError(f"Expected 'module:factory', got {self.target!r}")
        try:
            factory = getattr(import_module(module_name), attr)
            provider = factory()
        except (ImportError, AttributeError, TypeError) as exc:
            raise ToolDiscoveryError(f"Cannot load tool provider {self.target}: {exc}") from exc
        if not isinstance(provider, ToolProvider):
            raise ToolDiscoveryError(f"{self.target} did not return a tool provider")

        self._provider = provider
        return provider

    def close(self) -> None:
        close = getattr(self._provider, "close", None)
        if close is not None:
            close()


class ToolRegistry:
    """Holds the tools discovered at startup and executes calls to them."""

    def __init__(self, *, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        self._tools: dict[str, ToolDescriptor] = {}
        self._observer: Callable[[ToolTrace], None] | None = None
        self._providers: list[ToolProvider] = []

    def register(self, descriptor: ToolDescriptor) -> None:
        if descriptor.name in self._tools:
            raise ValueError(f"Tool already registered: {descriptor.name}")
        self._tools[descriptor.name] = descriptor

    def discover(self, providers: Iterable[ToolProvider]) -> tuple[ToolDescriptor, ...]:
        """Register the tools of every reachable provider.

        A provider that fails to list its tools is logged and skipped, so the
        session can still run with fewer (or zero) tools.
        """

        for provider in providers:
            self._providers.append(provider)
            try:
                descriptors = provider.list_tools()
            except Exception as exc:
                logger.warning(
                    "tool_discovery_failed",
                    provider=_provider_name(provider),
                    error=str(exc),
                    soft=True,
                )
                continue
            for descriptor in descriptors:
                self.register(descriptor)

        logger.info("tools_discovered", tools=sorted(self._tools))
        return self.descriptors()

    def descriptors(self) -> tuple[ToolDescriptor, ...]:
        return tuple(self._tools.values())

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def invoke(self, name: str, arguments: dict[str, Any]) -> str:
        """Run exactly one call of `name`; failures raise `ToolInvocationError`."""

        descriptor = self._tools.get(name)
        if descriptor is None:
            raise ToolInvocationError(name, "unknown tool")

        start = perf_counter()
        try:
            output = _render_result(self._run(descriptor, arguments))
        except ToolInvocationError as exc:
            self._notify(name, arguments, "", start, error=str(exc))
            raise
        except ValidationError as exc:
            self._notify(name, arguments, "", start, error=str(exc))
            raise ToolInvocationError(name, f"invalid arguments: {exc}") from exc
        except Exception as exc:
            self._notify(name, arguments, "", start, error=str(exc))
            raise ToolInvocationError(name, str(exc)) from exc

        self._notify(name, arguments, output, start)
        return output

    def close(self) -> None:
        """Release provider resources such as MCP server processes."""

        providers, self._providers = self._providers, []
        for provider in providers:
            close = getattr(provider, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as exc:
                logger.warning("tool_provider_close_failed", provider=_provider_name(provider), error=str(exc))

    def _run(self, descriptor: ToolDescriptor, arguments: dict[str, Any]) -> Any:
        if self.timeout_seconds is None:
            return descriptor.handle(arguments)

        # One daemon thread per call: a hung tool is abandoned, never joined at exit.
        future: Future[Any] = Future()

        def work() -> None:
            try:
                future.set_result(descriptor.handle(arguments))
            except Exception as exc:
                future.set_exception(exc)

        threading.Thread(target=work, name=f"nutribot-tool-{descriptor.name}", daemon=True).start()
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            raise ToolInvocationError(
                descriptor.name, f"timed out after {self.timeout_seconds}s"
            ) from exc

    def _notify(
        self,
        name: str,
        arguments: dict[str, Any],
        output: str,
        start: float,
        *,
        error: str | None = None,
    ) -> None:
        latency_ms = (perf_counter() - start) * 1000.0
        logger.info("tool_executed", tool=name, latency_ms=round(latency_ms, 2), error=error)
        if self._observer is not None:
            self._observer(
                ToolTrace(
                    name=name,
                    input_payload=arguments,
                    output_preview=output[:320],
                    latency_ms=latency_ms,
                    error=error,
                )
            )


def _render_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


def _provider_name(provider: object) -> str:
    return getattr(provider, "target", None) or type(provider).__name__


def openai_tool_schema(descriptor: ToolDescriptor) -> dict[str, Any]:
    """Function-calling schema accepted by `BaseChatModel.bind_tools`."""
    return {
        "type": "function",
        "function": {
            "name": descriptor.name,
            "description": descriptor.description,
            "parameters": descriptor.input_schema,
        },
    }
