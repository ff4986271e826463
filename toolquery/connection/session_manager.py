"""
SessionManager: owns at most one live MCP session per configured endpoint.

State machine: disconnected -> connecting -> ready | failed. The session lives
in a dedicated owner task so its lifetime is detached from whichever request
triggered the lazy handshake; callers only wait on a shielded future. All status
changes and handshake starts happen under one asyncio.Lock, so concurrent first
calls collapse into a single handshake (single-flight).
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager, AsyncExitStack
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

from toolquery.connection.client import SessionHandle, open_mcp_session
from toolquery.connection.endpoint import ConnectionEndpoint, TransportKind
from toolquery.core.errors import MCPConnectionError

logger = logging.getLogger(__name__)

Connector = Callable[[ConnectionEndpoint], AbstractAsyncContextManager[SessionHandle]]
T = TypeVar("T")


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class ServerConnection:
    """Snapshot of the connection state for one datasource."""

    url: str
    transport: TransportKind
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    last_connected: datetime | None = None
    last_error: str | None = None
    server_name: str = ""
    server_version: str = ""
    protocol_version: str = ""
    capabilities: dict[str, Any] = field(default_factory=dict)

    @property
    def connected(self) -> bool:
        return self.status is ConnectionStatus.READY


def _consume_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


class SessionManager:
    """
    Lazily establishes, caches and re-establishes the MCP session for one endpoint.

    Usage:
        manager = SessionManager(endpoint)
        handle = await manager.acquire()
        tools = await handle.session.list_tools()
        await manager.dispose()
    """

    def __init__(self, endpoint: ConnectionEndpoint, connector: Connector = open_mcp_session) -> None:
        self.endpoint = endpoint
        self._connector = connector
        self._lock = asyncio.Lock()
        self._state = ServerConnection(url=endpoint.url, transport=endpoint.transport)
        self._handle: SessionHandle | None = None
        self._pending: asyncio.Future[SessionHandle] | None = None
        self._owner: asyncio.Task[None] | None = None
        self._close_event: asyncio.Event | None = None
        self._handshakes = 0

    @property
    def handshake_count(self) -> int:
        """Number of handshakes started since construction."""
        return self._handshakes

    def status(self) -> ServerConnection:
        return self._state

    async def acquire(self) -> SessionHandle:
        """
        Return a ready session handle, performing the handshake if needed.

        Raises MCPConnectionError when the handshake fails; the failure is cached in
        the status and the next call starts over. No retry loop here.
        """
        async with self._lock:
            if self._is_ready():
                return self._handle
            if self._pending is None or self._pending.done():
                if self._owner is not None:
                    # The previous session ended on its own (transport dropped).
                    await self._teardown()
                self._start_handshake()
            pending = self._pending
        return await asyncio.shield(pending)

    async def invalidate(self, handle: SessionHandle, reason: str) -> None:
        """Drop ``handle`` after a transport failure so the next acquire() re-handshakes."""
        async with self._lock:
            if handle is not self._handle:
                return
            logger.warning("[session:invalidate] url=%s reason=%s", self.endpoint.url, reason)
            await self._teardown()
            self._state = replace(self._state, status=ConnectionStatus.FAILED, last_error=reason)

    async def dispose(self) -> None:
        """Close the session if one exists. Waits for an in-flight handshake first. Idempotent."""
        async with self._lock:
            pending = self._pending
            if pending is not None and not pending.done():
                with contextlib.suppress(MCPConnectionError):
                    await asyncio.shield(pending)
            await self._teardown()
            self._state = replace(self._state, status=ConnectionStatus.DISCONNECTED)
        logger.info("[session:dispose] url=%s", self.endpoint.url)

    def _is_ready(self) -> bool:
        return (
            self._state.status is ConnectionStatus.READY
            and self._handle is not None
            and self._owner is not None
            and not self._owner.done()
        )

    def _start_handshake(self) -> None:
        self._handshakes += 1
        self._pending = asyncio.get_running_loop().create_future()
        # Callers may all have given up on their deadline; mark the outcome retrieved.
        self._pending.add_done_callback(_consume_exception)
        self._close_event = asyncio.Event()
        self._state = replace(self._state, status=ConnectionStatus.CONNECTING)
        logger.info("[session:acquire] handshake #%d url=%s", self._handshakes, self.endpoint.url)
        self._owner = asyncio.create_task(
            self._own_session(self._pending, self._close_event),
            name=f"mcp-session:{self.endpoint.url}",
        )

    async def _own_session(self, ready: asyncio.Future, close_event: asyncio.Event) -> None:
        """Open the session, publish it, hold it until close_event, then close it in this task."""
        try:
            async with AsyncExitStack() as stack:
                try:
                    async with asyncio.timeout(self.endpoint.timeout):
                        handle = await stack.enter_async_context(self._connector(self.endpoint))
                except Exception as e:
                    detail = str(e) or type(e).__name__
                    error = MCPConnectionError(f"failed to connect to MCP server at {self.endpoint.url}: {detail}")
                    self._handle = None
                    self._state = replace(self._state, status=ConnectionStatus.FAILED, last_error=error.message)
                    logger.error("[session:handshake] FAILED url=%s error=%s", self.endpoint.url, detail)
                    ready.set_exception(error)
                    return

                self._handle = handle
                self._state = replace(
                    self._state,
                    status=ConnectionStatus.READY,
                    last_connected=datetime.now(timezone.utc),
                    last_error=None,
                    server_name=handle.server_name,
                    server_version=handle.server_version,
                    protocol_version=handle.protocol_version,
                    capabilities=dict(handle.capabilities),
                )
                logger.info("[session:handshake] READY url=%s server=%s", self.endpoint.url, handle.server_name)
                ready.set_result(handle)
                await close_event.wait()
        except Exception as e:
            # Transport died while the session was held, or closing it failed.
            logger.warning("[session:owner] session ended url=%s error=%s", self.endpoint.url, e)
            if self._handle is not None and self._state.status is ConnectionStatus.READY:
                self._state = replace(self._state, status=ConnectionStatus.FAILED, last_error=str(e))
            self._handle = None
        finally:
            if not ready.done():
                ready.set_exception(MCPConnectionError(f"session to {self.endpoint.url} closed before it was ready"))

    async def _teardown(self) -> None:
        owner, close_event = self._owner, self._close_event
        self._owner = None
        self._close_event = None
        self._handle = None
        self._pending = None
        if owner is None:
            return
        if close_event is not None:
            close_event.set()
        await asyncio.wait([owner])


async def acquire_with_retry(manager: SessionManager, max_retries: int, retry_interval: float) -> SessionHandle:
    """
    acquire() with the configured connection policy: one attempt plus up to
    ``max_retries`` retries, ``retry_interval`` seconds apart. Raises the last error.
    """
    attempts = max(0, max_retries) + 1
    last_error: MCPConnectionError | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await manager.acquire()
        except MCPConnectionError as e:
            last_error = e
            logger.warning("[session:retry] attempt %d/%d failed: %s", attempt, attempts, e.message)
            if attempt < attempts:
                await asyncio.sleep(retry_interval)
    raise last_error


async def run_with_session(
    manager: SessionManager,
    operation: Callable[[SessionHandle], Awaitable[T]],
    max_retries: int,
    retry_interval: float,
) -> T:
    """
    Run ``operation`` on a ready session. A transport failure (MCPConnectionError)
    invalidates the session and the operation is retried on a fresh handshake:
    one attempt plus up to ``max_retries`` retries, ``retry_interval`` seconds apart.
    Other errors propagate unchanged.
    """
    attempts = max(0, max_retries) + 1
    attempt = 1
    while True:
        handle = await acquire_with_retry(manager, max_retries, retry_interval)
        try:
            return await operation(handle)
        except MCPConnectionError as e:
            await manager.invalidate(handle, e.message)
            logger.warning("[session:run_with_session] attempt %d/%d failed: %s", attempt, attempts, e.message)
            if attempt >= attempts:
                raise
        attempt += 1
        await asyncio.sleep(retry_interval)
