"""
Tool-side data model: descriptors, invocations, outcomes and the per-query result.

Argument and payload values are pydantic ``JsonValue`` (string, number, boolean,
null, list, mapping), so validation and JSON serialization are total.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, JsonValue, model_validator


class ToolDescriptor(BaseModel):
    """One tool advertised by the MCP server. Immutable snapshot entry."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Tool name, unique within a catalog snapshot.")
    description: str = Field("", description="Human-readable description.")
    input_schema: dict[str, JsonValue] = Field(
        default_factory=dict, alias="inputSchema", description="JSON schema of the tool arguments (opaque)."
    )


class ToolInvocation(BaseModel):
    """A decision to call one tool with arguments. Consumed once by the invoker."""

    model_config = ConfigDict(frozen=True)

    tool_name: str = Field(..., min_length=1)
    arguments: dict[str, JsonValue] = Field(default_factory=dict)
    reasoning: str = ""


class ToolOutcome(BaseModel):
    """
    Result of one invocation attempt.

    Either the payload (``data``) or the error text is set, never both:
    a successful outcome has no error, a failed one has a non-empty error and no payload.
    """

    model_config = ConfigDict(frozen=True)

    tool_name: str
    success: bool
    data: JsonValue = None
    error: str | None = None

    @model_validator(mode="after")
    def _payload_xor_error(self) -> "ToolOutcome":
        if self.success and self.error is not None:
            raise ValueError("successful outcome must not carry error text")
        if not self.success:
            if not self.error:
                raise ValueError("failed outcome requires error text")
            if self.data is not None:
                raise ValueError("failed outcome must not carry a payload")
        return self

    @classmethod
    def succeeded(cls, tool_name: str, data: JsonValue) -> "ToolOutcome":
        return cls(tool_name=tool_name, success=True, data=data)

    @classmethod
    def failed(cls, tool_name: str, error: str) -> "ToolOutcome":
        return cls(tool_name=tool_name, success=False, error=error or "unknown error")


class QueryResult(BaseModel):
    """Outcome of one processed natural-language query. tool_calls and results are parallel lists."""

    model_config = ConfigDict(frozen=True)

    query: str
    tool_calls: list[ToolInvocation] = Field(default_factory=list)
    results: list[ToolOutcome] = Field(default_factory=list)
    summary: str = ""
    processed_at: datetime

    @model_validator(mode="after")
    def _parallel_lists(self) -> "QueryResult":
        if len(self.tool_calls) != len(self.results):
            raise ValueError(
                f"tool_calls and results must have the same length "
                f"({len(self.tool_calls)} != {len(self.results)})"
            )
        return self
