"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


# Logging
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# MCP server connection (from env; a datasource can also be configured from JSON)
MCP_SERVER_URL: str = os.getenv("MCP_SERVER_URL", "").strip()
MCP_TRANSPORT: str = os.getenv("MCP_TRANSPORT", "").strip().lower()
MCP_STREAM_PATH: str = os.getenv("MCP_STREAM_PATH", "/stream").strip() or "/stream"

# Authentication against the MCP server: none | basic | bearer
MCP_AUTH_TYPE: str = os.getenv("MCP_AUTH_TYPE", "none").strip().lower() or "none"
MCP_USERNAME: str = os.getenv("MCP_USERNAME", "").strip()
MCP_PASSWORD: str = os.getenv("MCP_PASSWORD", "").strip()
MCP_BEARER_TOKEN: str = os.getenv("MCP_BEARER_TOKEN", "").strip()

# Connection policy defaults (seconds). Non-positive settings fall back to these.
DEFAULT_CONNECTION_TIMEOUT: float = 30.0
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_INTERVAL: float = 5.0
DEFAULT_QUERY_TIMEOUT: float = 30.0
DEFAULT_MAX_CONCURRENT_QUERIES: int = 5

MCP_CONNECTION_TIMEOUT: float = _env_float("MCP_CONNECTION_TIMEOUT", DEFAULT_CONNECTION_TIMEOUT)
MCP_MAX_RETRIES: int = _env_int("MCP_MAX_RETRIES", DEFAULT_MAX_RETRIES)
MCP_RETRY_INTERVAL: float = _env_float("MCP_RETRY_INTERVAL", DEFAULT_RETRY_INTERVAL)
QUERY_TIMEOUT: float = _env_float("DEFAULT_QUERY_TIMEOUT", DEFAULT_QUERY_TIMEOUT)
MAX_CONCURRENT_QUERIES: int = _env_int("MAX_CONCURRENT_QUERIES", DEFAULT_MAX_CONCURRENT_QUERIES)

# Per-call timeouts (seconds), independent of the inbound request deadline
TOOLS_LIST_TIMEOUT: float = 15.0
TOOL_CALL_TIMEOUT: float = 30.0
LLM_API_TIMEOUT: float = 60.0

# Client identity advertised in the initialize exchange
CLIENT_NAME: str = "toolquery"
CLIENT_VERSION: str = "0.1.0"

# Reasoning backend: mock | openai | anthropic
LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "mock").strip().lower()
LLM_MODEL: str = os.getenv("LLM_MODEL", "").strip()
LLM_API_KEY: str = os.getenv("LLM_API_KEY", "").strip()
LLM_MAX_TOKENS: int = 1000

# Anthropic messages API (raw HTTP)
ANTHROPIC_MESSAGES_URL: str = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION: str = "2023-06-01"
ANTHROPIC_DEFAULT_MODEL: str = "claude-3-5-sonnet-20241022"

# OpenAI chat completions
OPENAI_DEFAULT_MODEL: str = "gpt-4o-mini"
