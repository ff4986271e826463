"""
Application errors for clean API error handling.

Every error carries a status classification so the API layer can map it to
bad-request (400) or internal (500) without knowing where it was raised.
"""

BAD_REQUEST = "bad_request"
INTERNAL = "internal"


class QueryError(Exception):
    """Base class for failures reported to the caller of a query."""

    status: str = INTERNAL

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class QueryValidationError(QueryError):
    """Malformed or empty query, tool name or argument JSON. Raised before any network call."""

    status = BAD_REQUEST


class MCPConnectionError(QueryError):
    """Handshake or transport failure talking to the MCP server."""


class ProtocolError(QueryError):
    """Malformed server response to a catalog or tool-call request. Not retried."""


class ReasoningError(QueryError):
    """Reasoning backend unreachable, failing, or returning something undecodable."""


class ToolExecutionError(QueryError):
    """A single tool invocation failed. Captured into a failed ToolOutcome, never aborts a query."""
