"""
Shared fakes: an in-memory MCP session and a connector that counts handshakes.

No network: the connector yields a SessionHandle wrapping FakeSession, which
answers tools/list and tools/call from plain dicts (same shape as the MCP wire).
"""

import asyncio
from contextlib import asynccontextmanager

import pytest

from toolquery.connection.client import SessionHandle
from toolquery.connection.endpoint import ConnectionEndpoint, TransportKind

DEFAULT_TOOLS = [
    {"name": "calculator", "description": "Evaluate an arithmetic expression", "inputSchema": {"type": "object"}},
    {
        "name": "query_loki_logs",
        "description": "Run a LogQL query against Loki",
        "inputSchema": {"type": "object", "properties": {"query": {"type": "string"}, "limit": {"type": "integer"}}},
    },
]


def text_result(*texts: str, is_error: bool = False) -> dict:
    return {"content": [{"type": "text", "text": t} for t in texts], "isError": is_error}


class FakeSession:
    """Stands in for mcp.ClientSession: list_tools() and call_tool(name, arguments)."""

    def __init__(
        self, tools=None, results=None, list_error=None, call_error=None, list_delay=0.0, list_fail_times=None
    ):
        self.tools = DEFAULT_TOOLS if tools is None else tools
        self.results = results or {}
        self.list_error = list_error
        self.call_error = call_error
        self.list_delay = list_delay
        self.list_fail_times = list_fail_times
        self.list_calls = 0
        self.active = 0
        self.max_active = 0
        self.calls: list[tuple[str, dict]] = []

    async def list_tools(self):
        self.list_calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.list_delay:
                await asyncio.sleep(self.list_delay)
        finally:
            self.active -= 1
        # list_fail_times=None fails every call; N fails only the first N.
        failing = self.list_fail_times is None or self.list_calls <= self.list_fail_times
        if self.list_error is not None and failing:
            raise self.list_error
        return {"tools": self.tools}

    async def call_tool(self, name, arguments):
        self.calls.append((name, arguments))
        if self.call_error is not None:
            raise self.call_error
        return self.results.get(name, text_result(f"{name} ok"))


class FakeConnector:
    """Connector for SessionManager. Fails the first ``fail_times`` handshakes."""

    def __init__(self, session: FakeSession | None = None, delay: float = 0.0, fail_times: int = 0):
        self.session = session or FakeSession()
        self.delay = delay
        self.fail_times = fail_times
        self.handshakes = 0
        self.closed = 0

    def __call__(self, endpoint: ConnectionEndpoint):
        return self._open(endpoint)

    @asynccontextmanager
    async def _open(self, endpoint: ConnectionEndpoint):
        self.handshakes += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.handshakes <= self.fail_times:
            raise ConnectionRefusedError("connection refused")
        try:
            yield SessionHandle(
                session=self.session,
                server_name="fake-mcp",
                server_version="1.0.0",
                protocol_version="2025-06-18",
                capabilities={"tools": {"listChanged": False}},
            )
        finally:
            self.closed += 1


def make_endpoint(timeout: float = 5.0, max_retries: int = 0, retry_interval: float = 0.0) -> ConnectionEndpoint:
    return ConnectionEndpoint(
        url="http://mcp.test/sse",
        transport=TransportKind.SSE,
        timeout=timeout,
        max_retries=max_retries,
        retry_interval=retry_interval,
    )


@pytest.fixture
def endpoint() -> ConnectionEndpoint:
    return make_endpoint()


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def connector(fake_session: FakeSession) -> FakeConnector:
    return FakeConnector(fake_session)
