"""Schemas for the query endpoint: the inbound query shape and frame-shaped results."""

from pydantic import BaseModel, ConfigDict, Field, JsonValue

NATURAL_LANGUAGE = "natural_language"
TOOL_CALL = "tool_call"
LIST_TOOLS = "list_tools"
QUERY_TYPES: frozenset[str] = frozenset({NATURAL_LANGUAGE, TOOL_CALL, LIST_TOOLS})


class QueryRequest(BaseModel):
    """Request body for POST /query. Keys follow the host's camelCase JSON; snake_case is accepted too."""

    model_config = ConfigDict(populate_by_name=True)

    ref_id: str = Field("A", alias="refId", description="Host-side query identifier, echoed in the response.")
    query_type: str = Field(NATURAL_LANGUAGE, alias="queryType", description="natural_language | tool_call | list_tools")
    query: str = Field("", description="Natural-language query text.")
    tool_name: str = Field("", alias="toolName", description="Tool to call directly (tool_call queries).")
    tool_arguments: str = Field("", alias="toolArguments", description="JSON object string of tool arguments.")
    max_results: int | None = Field(None, alias="maxResults", ge=1, description="Cap on returned rows.")
    timeout: float | None = Field(None, gt=0, description="Query deadline in seconds.")


class FrameField(BaseModel):
    """One named column of a frame."""

    name: str
    values: list[JsonValue] = Field(default_factory=list)


class Frame(BaseModel):
    """Tabular result handed back to the host."""

    name: str
    fields: list[FrameField] = Field(default_factory=list)
    meta: dict[str, JsonValue] = Field(default_factory=dict)


class QueryResponse(BaseModel):
    """Response for POST /query."""

    ref_id: str = Field(..., description="refId of the answered query.")
    frames: list[Frame] = Field(default_factory=list)
