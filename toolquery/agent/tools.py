"""
Agent tools: discovery and execution of the tools the MCP server advertises.

ToolCatalog fetches a fresh snapshot of tools/list on every call (no caching).
ToolInvoker sends one tools/call and normalizes the content segments into a
ToolOutcome; it never raises, failures become failed outcomes.
"""

import asyncio
import json
import logging
from typing import Any

from mcp.shared.exceptions import McpError
from pydantic import ValidationError

from toolquery.connection.client import SessionHandle
from toolquery.core.config import TOOL_CALL_TIMEOUT, TOOLS_LIST_TIMEOUT
from toolquery.core.errors import MCPConnectionError, ProtocolError, ToolExecutionError
from toolquery.schemas.tools import ToolDescriptor, ToolInvocation, ToolOutcome

logger = logging.getLogger(__name__)


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from an SDK model or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _to_plain(obj: Any) -> Any:
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json", exclude_none=True)
    return obj


def parse_tool_listing(result: Any) -> list[ToolDescriptor]:
    """Turn a tools/list result into descriptors, in server order. Raises ProtocolError if malformed."""
    tools = _field(result, "tools")
    if not isinstance(tools, list):
        raise ProtocolError("malformed tools/list response: 'tools' is not a list")
    descriptors: list[ToolDescriptor] = []
    seen: set[str] = set()
    for i, tool in enumerate(tools):
        name = _field(tool, "name")
        if not isinstance(name, str) or not name:
            raise ProtocolError(f"malformed tools/list response: tool #{i} has no name")
        if name in seen:
            raise ProtocolError(f"malformed tools/list response: duplicate tool name {name!r}")
        seen.add(name)
        schema = _field(tool, "inputSchema") or _field(tool, "input_schema") or {}
        try:
            descriptors.append(
                ToolDescriptor(
                    name=name,
                    description=_field(tool, "description") or "",
                    input_schema=_to_plain(schema),
                )
            )
        except ValidationError as e:
            raise ProtocolError(f"malformed tools/list response: tool {name!r}: {e}") from e
    return descriptors


class ToolCatalog:
    """Fetches the tools the server currently advertises."""

    def __init__(self, timeout: float = TOOLS_LIST_TIMEOUT) -> None:
        self.timeout = timeout

    async def list_tools(self, handle: SessionHandle | None) -> list[ToolDescriptor]:
        if handle is None:
            raise ProtocolError("session is not ready")
        logger.info("[tools:list_tools] IN  server=%s", handle.server_name)
        try:
            result = await asyncio.wait_for(handle.session.list_tools(), timeout=self.timeout)
        except TimeoutError as e:
            raise MCPConnectionError(f"tools/list timed out after {self.timeout:.0f}s") from e
        except (McpError, ValidationError) as e:
            raise ProtocolError(f"tools/list failed: {e}") from e
        except Exception as e:
            raise MCPConnectionError(f"tools/list failed: {e or type(e).__name__}") from e
        descriptors = parse_tool_listing(result)
        logger.info("[tools:list_tools] OUT tools=%s", [d.name for d in descriptors])
        return descriptors


def normalize_tool_result(tool_name: str, result: Any) -> ToolOutcome:
    """
    Text segments are joined with newlines; with no text segments the raw content
    is kept as structured data. The server's isError flag decides success.
    """
    content = _field(result, "content")
    if not isinstance(content, list):
        raise ToolExecutionError("malformed tools/call response: 'content' is not a list")
    texts = [_field(seg, "text") or "" for seg in content if _field(seg, "type") == "text"]
    payload: Any = "\n".join(texts) if texts else [_to_plain(seg) for seg in content]

    if _field(result, "isError", False):
        if isinstance(payload, str) and payload:
            return ToolOutcome.failed(tool_name, payload)
        return ToolOutcome.failed(tool_name, f"tool reported an error: {json.dumps(payload, default=str)}")
    return ToolOutcome.succeeded(tool_name, payload)


class ToolInvoker:
    """Executes a single tool invocation over the session."""

    def __init__(self, timeout: float = TOOL_CALL_TIMEOUT) -> None:
        self.timeout = timeout

    async def invoke(self, handle: SessionHandle | None, invocation: ToolInvocation) -> ToolOutcome:
        outcome, _ = await self.call(handle, invocation)
        return outcome

    async def call(
        self, handle: SessionHandle | None, invocation: ToolInvocation
    ) -> tuple[ToolOutcome, Exception | None]:
        """
        Like invoke(), but also returns the transport exception when the session itself
        failed (as opposed to a server error reply, a malformed result, a timeout or a
        tool reporting isError), so the caller can invalidate the session.
        """
        name = invocation.tool_name
        transport_error: Exception | None = None
        logger.info("[tools:invoke] IN  tool=%s arguments=%r", name, invocation.arguments)
        try:
            if handle is None:
                raise ToolExecutionError("session is not ready")
            result = await asyncio.wait_for(
                handle.session.call_tool(name, dict(invocation.arguments)),
                timeout=self.timeout,
            )
            outcome = normalize_tool_result(name, result)
        except TimeoutError:
            outcome = ToolOutcome.failed(name, f"tool call timed out after {self.timeout:.0f}s")
        except (McpError, ToolExecutionError, ValidationError) as e:
            logger.warning("[tools:invoke] tool=%s failed: %s", name, e)
            outcome = ToolOutcome.failed(name, str(e) or type(e).__name__)
        except Exception as e:
            logger.warning("[tools:invoke] tool=%s transport failure: %s", name, e)
            transport_error = e
            outcome = ToolOutcome.failed(name, str(e) or type(e).__name__)
        logger.info("[tools:invoke] OUT tool=%s success=%s", name, outcome.success)
        return outcome, transport_error
