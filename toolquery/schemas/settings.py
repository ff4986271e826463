"""Per-datasource configuration, as stored by the host (camelCase JSON) or read from env."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from toolquery.core.config import (
    DEFAULT_CONNECTION_TIMEOUT,
    DEFAULT_MAX_CONCURRENT_QUERIES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_QUERY_TIMEOUT,
    DEFAULT_RETRY_INTERVAL,
    LLM_API_KEY,
    LLM_MODEL,
    LLM_PROVIDER,
    MAX_CONCURRENT_QUERIES,
    MCP_AUTH_TYPE,
    MCP_BEARER_TOKEN,
    MCP_CONNECTION_TIMEOUT,
    MCP_MAX_RETRIES,
    MCP_PASSWORD,
    MCP_RETRY_INTERVAL,
    MCP_SERVER_URL,
    MCP_STREAM_PATH,
    MCP_TRANSPORT,
    MCP_USERNAME,
    QUERY_TIMEOUT,
)

_FALLBACKS: dict[str, float | int] = {
    "connection_timeout": DEFAULT_CONNECTION_TIMEOUT,
    "max_retries": DEFAULT_MAX_RETRIES,
    "retry_interval": DEFAULT_RETRY_INTERVAL,
    "default_query_timeout": DEFAULT_QUERY_TIMEOUT,
    "max_concurrent_queries": DEFAULT_MAX_CONCURRENT_QUERIES,
}


class DataSourceSettings(BaseModel):
    """Connection, auth, reasoning-backend and query settings for one datasource."""

    model_config = ConfigDict(populate_by_name=True, validate_default=True)

    server_url: str = Field("", alias="serverUrl", description="MCP server URL (http, https, ws or wss).")
    transport: str = Field("", description="stream | sse; empty infers from the URL scheme.")
    stream_path: str = Field("/stream", alias="streamPath", description="Path appended to stream URLs that have none.")
    connection_timeout: float = Field(0, alias="connectionTimeout", description="Handshake timeout in seconds.")

    auth_type: str = Field("none", alias="authType", description="none | basic | bearer")
    username: str = ""
    password: str = ""
    bearer_token: str = Field("", alias="bearerToken")
    custom_headers: dict[str, str] = Field(default_factory=dict, alias="customHeaders")

    llm_provider: str = Field("mock", alias="llmProvider", description="mock | openai | anthropic")
    llm_model: str = Field("", alias="llmModel")
    llm_api_key: str = Field("", alias="llmApiKey")

    max_retries: int = Field(0, alias="maxRetries")
    retry_interval: float = Field(0, alias="retryInterval", description="Seconds between connection attempts.")
    default_query_timeout: float = Field(0, alias="defaultQueryTimeout")
    max_concurrent_queries: int = Field(0, alias="maxConcurrentQueries")

    @field_validator(
        "connection_timeout",
        "max_retries",
        "retry_interval",
        "default_query_timeout",
        "max_concurrent_queries",
    )
    @classmethod
    def _positive_or_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or value <= 0:
            return _FALLBACKS[info.field_name]
        return value

    @field_validator("transport", "auth_type", "llm_provider")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return (value or "").strip().lower()

    @classmethod
    def from_env(cls) -> "DataSourceSettings":
        """Build settings from environment constants (see core.config)."""
        return cls(
            server_url=MCP_SERVER_URL,
            transport=MCP_TRANSPORT,
            stream_path=MCP_STREAM_PATH,
            connection_timeout=MCP_CONNECTION_TIMEOUT,
            auth_type=MCP_AUTH_TYPE,
            username=MCP_USERNAME,
            password=MCP_PASSWORD,
            bearer_token=MCP_BEARER_TOKEN,
            llm_provider=LLM_PROVIDER,
            llm_model=LLM_MODEL,
            llm_api_key=LLM_API_KEY,
            max_retries=MCP_MAX_RETRIES,
            retry_interval=MCP_RETRY_INTERVAL,
            default_query_timeout=QUERY_TIMEOUT,
            max_concurrent_queries=MAX_CONCURRENT_QUERIES,
        )
