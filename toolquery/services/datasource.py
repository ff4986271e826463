"""
Datasource: one configured MCP server plus its reasoning backend, as seen by the host.

Responsibility: Build the connection, catalog, invoker, provider and orchestrator from
settings, dispatch inbound queries by type into frames, and answer the resource reads
(health, tools, servers). Called by the API; no HTTP here.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any

from toolquery.agent.graph import QueryOrchestrator
from toolquery.agent.llm import ReasoningProvider, create_provider
from toolquery.agent.tools import ToolCatalog, ToolInvoker
from toolquery.connection.client import SessionHandle, open_mcp_session
from toolquery.connection.endpoint import ConnectionEndpoint
from toolquery.connection.session_manager import (
    Connector,
    SessionManager,
    acquire_with_retry,
    run_with_session,
)
from toolquery.core.errors import MCPConnectionError, QueryError, QueryValidationError
from toolquery.schemas.query import (
    LIST_TOOLS,
    NATURAL_LANGUAGE,
    QUERY_TYPES,
    TOOL_CALL,
    Frame,
    FrameField,
    QueryRequest,
    QueryResponse,
)
from toolquery.schemas.settings import DataSourceSettings
from toolquery.schemas.tools import ToolDescriptor, ToolInvocation, ToolOutcome

logger = logging.getLogger(__name__)

NO_DESCRIPTION = "No description available"


def parse_tool_arguments(raw: str) -> dict[str, Any]:
    """Decode the JSON argument string of a tool_call query. Empty means no arguments."""
    if not raw or not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise QueryValidationError(f"invalid tool arguments JSON: {e}") from e
    if not isinstance(value, dict):
        raise QueryValidationError("tool arguments must be a JSON object")
    return value


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _result_values(outcome: ToolOutcome) -> list[str]:
    if not outcome.success:
        return [outcome.error or ""]
    if isinstance(outcome.data, str):
        return [outcome.data]
    if isinstance(outcome.data, list):
        return [json.dumps(item) for item in outcome.data]
    return [json.dumps(outcome.data)]


class DataSource:
    """
    Owns everything needed to answer queries against one MCP server.

    Usage:
        ds = DataSource(DataSourceSettings(serverUrl="http://localhost:3001/sse"))
        response = await ds.run_query(QueryRequest(query="show me error logs"))
        await ds.dispose()
    """

    def __init__(
        self,
        settings: DataSourceSettings,
        connector: Connector = open_mcp_session,
        provider: ReasoningProvider | None = None,
    ) -> None:
        self.settings = settings
        self.endpoint = ConnectionEndpoint.from_settings(settings)
        self.sessions = SessionManager(self.endpoint, connector)
        self.catalog = ToolCatalog()
        self.invoker = ToolInvoker()
        self.provider = provider or create_provider(settings)
        self.orchestrator = QueryOrchestrator(self.sessions, self.catalog, self.provider, self.invoker)
        self._gate = asyncio.Semaphore(settings.max_concurrent_queries)

    @classmethod
    def from_env(cls) -> "DataSource":
        return cls(DataSourceSettings.from_env())

    async def run_query(self, request: QueryRequest) -> QueryResponse:
        query_type = request.query_type or NATURAL_LANGUAGE
        logger.info("[datasource:run_query] IN  ref_id=%s type=%s", request.ref_id, query_type)
        if query_type not in QUERY_TYPES:
            raise QueryValidationError(f"unknown query type: {query_type!r}")

        if query_type == NATURAL_LANGUAGE:
            if not request.query.strip():
                raise QueryValidationError("query is required")
            run = partial(self._natural_language, request)
        elif query_type == TOOL_CALL:
            if not request.tool_name.strip():
                raise QueryValidationError("tool name is required for tool_call queries")
            invocation = ToolInvocation(
                tool_name=request.tool_name.strip(),
                arguments=parse_tool_arguments(request.tool_arguments),
            )
            run = partial(self._tool_call, invocation, request.tool_arguments)
        else:
            run = partial(self._list_tools, request.max_results)

        timeout = request.timeout or self.settings.default_query_timeout
        try:
            async with self._gate:
                async with asyncio.timeout(timeout):
                    frame = await run()
        except TimeoutError as e:
            raise QueryError(f"query timed out after {timeout:.0f}s") from e
        logger.info("[datasource:run_query] OUT ref_id=%s frame=%s", request.ref_id, frame.name)
        return QueryResponse(ref_id=request.ref_id, frames=[frame])

    async def _natural_language(self, request: QueryRequest) -> Frame:
        result = await self.orchestrator.process(request.query)
        return Frame(
            name="natural_language_query",
            fields=[
                FrameField(name="query", values=[result.query]),
                FrameField(name="summary", values=[result.summary]),
                FrameField(name="tool_calls", values=[len(result.tool_calls)]),
                FrameField(name="timestamp", values=[result.processed_at.isoformat()]),
            ],
            meta={"queryType": NATURAL_LANGUAGE, "result": result.model_dump(mode="json")},
        )

    async def _tool_call(self, invocation: ToolInvocation, raw_arguments: str) -> Frame:
        handle = await self._session()
        outcome, transport_error = await self.invoker.call(handle, invocation)
        if transport_error is not None:
            await self.sessions.invalidate(handle, outcome.error)
        return Frame(
            name="tool_call_result",
            fields=[
                FrameField(name="tool_name", values=[invocation.tool_name]),
                FrameField(name="success", values=[outcome.success]),
                FrameField(name="timestamp", values=[_now()]),
                FrameField(name="result", values=_result_values(outcome)),
            ],
            meta={
                "queryType": TOOL_CALL,
                "toolName": invocation.tool_name,
                "toolArgs": raw_arguments,
                "isError": not outcome.success,
            },
        )

    async def _list_tools(self, max_results: int | None) -> Frame:
        tools = await self._fetch_tools()
        if max_results:
            tools = tools[:max_results]
        return Frame(
            name="tools",
            fields=[
                FrameField(name="name", values=[t.name for t in tools]),
                FrameField(name="description", values=[t.description or NO_DESCRIPTION for t in tools]),
            ],
            meta={"queryType": LIST_TOOLS, "toolCount": len(tools)},
        )

    async def _session(self) -> SessionHandle:
        return await acquire_with_retry(self.sessions, self.endpoint.max_retries, self.endpoint.retry_interval)

    async def _fetch_tools(self) -> list[ToolDescriptor]:
        return await run_with_session(
            self.sessions, self.catalog.list_tools, self.endpoint.max_retries, self.endpoint.retry_interval
        )

    # --- Resource reads ---

    async def health(self) -> dict[str, Any]:
        """Single connection attempt plus a catalog fetch. Never raises a QueryError."""
        try:
            handle = await self.sessions.acquire()
        except MCPConnectionError as e:
            return self._health("error", f"Failed to connect to MCP server: {e.message}")
        try:
            tools = await self.catalog.list_tools(handle)
        except QueryError as e:
            if isinstance(e, MCPConnectionError):
                await self.sessions.invalidate(handle, e.message)
            return self._health("error", f"Failed to list tools: {e.message}")
        return self._health("ok", "MCP connection is healthy", tool_count=len(tools))

    def _health(self, status: str, message: str, tool_count: int = 0) -> dict[str, Any]:
        logger.info("[datasource:health] status=%s message=%s", status, message)
        return {
            "status": status,
            "message": message,
            "session": self.sessions.status().status.value,
            "toolCount": tool_count,
        }

    async def tools(self) -> list[dict[str, Any]]:
        tools = await self._fetch_tools()
        return [t.model_dump(mode="json", by_alias=True) for t in tools]

    def servers(self) -> dict[str, Any]:
        state = self.sessions.status()
        return {
            "serverUrl": self.endpoint.url,
            "transport": self.endpoint.transport.value,
            "connected": state.connected,
            "status": state.status.value,
            "serverName": state.server_name,
            "serverVersion": state.server_version,
            "protocolVersion": state.protocol_version,
            "capabilities": state.capabilities,
            "lastError": state.last_error,
        }

    async def dispose(self) -> None:
        await self.sessions.dispose()
