"""
Default MCP connector: open a ClientSession over streaming HTTP or SSE and run
the initialize exchange (client identity + capabilities).

The connector is an async context manager: entering it performs the handshake,
exiting it closes the session and the transport. It must be entered and exited
in the same task (the MCP SDK transports run anyio task groups).
"""

import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx

from toolquery.connection.endpoint import ConnectionEndpoint, TransportKind
from toolquery.core.config import CLIENT_NAME, CLIENT_VERSION

logger = logging.getLogger(__name__)

# Long-lived stream reads; individual requests are bounded by the endpoint timeout.
STREAM_READ_TIMEOUT = 300.0


@dataclass(frozen=True)
class SessionHandle:
    """A ready-to-use session plus what the server told us during initialize."""

    session: Any  # mcp.ClientSession: list_tools(), call_tool(name, arguments)
    server_name: str = ""
    server_version: str = ""
    protocol_version: str = ""
    capabilities: dict[str, Any] = field(default_factory=dict)


@asynccontextmanager
async def open_mcp_session(endpoint: ConnectionEndpoint) -> AsyncIterator[SessionHandle]:
    """Open the transport for ``endpoint``, initialize an MCP session and yield its handle."""
    from mcp import ClientSession
    from mcp.types import Implementation

    logger.info("[client:open_mcp_session] IN  url=%s transport=%s", endpoint.url, endpoint.transport.value)
    async with AsyncExitStack() as stack:
        if endpoint.transport is TransportKind.STREAM:
            from mcp.client.streamable_http import streamable_http_client

            http_client = await stack.enter_async_context(
                httpx.AsyncClient(
                    headers=endpoint.headers,
                    timeout=httpx.Timeout(endpoint.timeout, read=STREAM_READ_TIMEOUT),
                )
            )
            read_stream, write_stream, _ = await stack.enter_async_context(
                streamable_http_client(endpoint.url, http_client=http_client)
            )
        else:
            from mcp.client.sse import sse_client

            read_stream, write_stream = await stack.enter_async_context(
                sse_client(
                    endpoint.url,
                    headers=endpoint.headers,
                    timeout=endpoint.timeout,
                    sse_read_timeout=STREAM_READ_TIMEOUT,
                )
            )

        session = await stack.enter_async_context(
            ClientSession(
                read_stream,
                write_stream,
                client_info=Implementation(name=CLIENT_NAME, version=CLIENT_VERSION),
            )
        )
        init = await session.initialize()
        handle = SessionHandle(
            session=session,
            server_name=init.serverInfo.name,
            server_version=init.serverInfo.version,
            protocol_version=str(init.protocolVersion),
            capabilities=init.capabilities.model_dump(exclude_none=True),
        )
        logger.info(
            "[client:open_mcp_session] OUT server=%s version=%s protocol=%s",
            handle.server_name, handle.server_version, handle.protocol_version,
        )
        yield handle
    logger.info("[client:open_mcp_session] closed url=%s", endpoint.url)
