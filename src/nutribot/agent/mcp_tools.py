"""Tools served by Model Context Protocol servers."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Callable, Coroutine, Sequence
from concurrent.futures import Future
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from functools import partial
from typing import Any

import structlog

from nutribot.config import McpServerConfig
from nutribot.errors import ToolDiscoveryError, ToolInvocationError
from nutribot.types import ToolDescriptor

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[Any]]

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


@asynccontextmanager
async def open_stdio_session(server: McpServerConfig) -> AsyncIterator[Any]:
    """Spawn `server.command` and yield an initialized `mcp.ClientSession`."""

    from mcp import ClientSession, StdioServerParameters
    from mcp.client.stdio import stdio_client

    params = StdioServerParameters(command=server.command, args=list(server.args), env=server.env)
    async with stdio_client(params) as (read_stream, write_stream):
        async with ClientSession(read_stream, write_stream) as session:
            await session.initialize()
            yield session


class McpToolProvider:
    """Exposes the tools of one MCP server as a `ToolProvider`.

    The client session lives on a private event loop in a daemon thread and
    is opened on the first `list_tools()`. Requests block the caller for at
    most `timeout_seconds`. `close()` ends the session and stops the server.
    """

    def __init__(
        self,
        server: McpServerConfig,
        *,
        connect: SessionFactory | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.server = server
        self.target = f"mcp:{server.name}"
        self.timeout_seconds = timeout_seconds
        self._connect = connect or partial(open_stdio_session, server)
        self._lock = threading.Lock()
        self._session: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stop: asyncio.Event | None = None
        self._serving: Future[None] | None = None

    def list_tools(self) -> list[ToolDescriptor]:
        result = self._submit(lambda session: session.list_tools())
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                input_schema=dict(tool.inputSchema or _EMPTY_SCHEMA),
                handle=partial(self.call, tool.name),
            )
            for tool in result.tools
        ]

    def call(self, name: str, arguments: dict[str, Any]) -> str:
        result = self._submit(lambda session: session.call_tool(name, arguments))
        text = _content_text(result.content)
        if result.isError:
            raise ToolInvocationError(name, text or "server reported an error")
        return text

    def close(self) -> None:
        with self._lock:
            loop, thread, stop, serving = self._loop, self._thread, self._stop, self._serving
            self._session = self._loop = self._thread = self._stop = self._serving = None
        if loop is None or thread is None:
            return

        if stop is not None:
            loop.call_soon_threadsafe(stop.set)
        if serving is not None:
            try:
                serving.result(timeout=self.timeout_seconds)
            except Exception as exc:
                logger.warning("mcp_session_close_failed", server=self.server.name, error=repr(exc))
        _stop_loop(loop, thread, self.timeout_seconds)
        logger.info("mcp_session_closed", server=self.server.name)

    def _submit(self, request: Callable[[Any], Coroutine[Any, Any, Any]]) -> Any:
        session, loop = self._ensure_session()
        future = asyncio.run_coroutine_threadsafe(request(session), loop)
        try:
            return future.result(timeout=self.timeout_seconds)
        except TimeoutError as exc:
            future.cancel()
            raise TimeoutError(
                f"MCP server {self.server.name} did not answer within {self.timeout_seconds}s"
            ) from exc

    def _ensure_session(self) -> tuple[Any, asyncio.AbstractEventLoop]:
        with self._lock:
            if self._session is not None and self._loop is not None:
                return self._session, self._loop

            loop = asyncio.new_event_loop()
            thread = threading.Thread(
                target=loop.run_forever, name=f"nutribot-mcp-{self.server.name}", daemon=True
            )
            thread.start()
            ready: Future[Any] = Future()
            stop = asyncio.Event()
            serving = asyncio.run_coroutine_threadsafe(self._serve(ready, stop), loop)
            try:
                session = ready.result(timeout=self.timeout_seconds)
            except Exception as exc:
                serving.cancel()
                _stop_loop(loop, thread, self.timeout_seconds)
                raise ToolDiscoveryError(
                    f"Cannot start MCP server {self.server.name}: {exc!r}"
                ) from exc

            self._session, self._loop, self._thread = session, loop, thread
            self._stop, self._serving = stop, serving
            logger.info("mcp_session_started", server=self.server.name, command=self.server.command)
            return session, loop

    async def _serve(self, ready: Future[Any], stop: asyncio.Event) -> None:
        # The transport context is entered and exited by this one task.
        try:
            async with self._connect() as session:
                ready.set_result(session)
                await stop.wait()
        except Exception as exc:
            if not ready.done():
                ready.set_exception(exc)
                return
            raise


def build_mcp_providers(
    servers: Sequence[McpServerConfig], *, timeout_seconds: float | None
) -> list[McpToolProvider]:
    timeout = timeout_seconds if timeout_seconds is not None else 30.0
    return [McpToolProvider(server, timeout_seconds=timeout) for server in servers]


def _stop_loop(loop: asyncio.AbstractEventLoop, thread: threading.Thread, timeout: float) -> None:
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout)
    if not thread.is_alive():
        loop.close()


def _content_text(content: Sequence[Any]) -> str:
    parts: list[str] = []
    for item in content:
        text = getattr(item, "text", None)
        parts.append(text if text is not None else f"[{getattr(item, 'type', 'content')}]")
    return "\n".join(parts)
