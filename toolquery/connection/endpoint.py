"""
ConnectionEndpoint: turn a server address plus timeout/retry/auth settings into
a transport choice and the parameters needed to open it.

Scheme rules: http/https use the configured transport (event-stream when unset);
ws/wss always use streaming HTTP with the scheme rewritten to http/https.
"""

import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlparse, urlunparse

from toolquery.core.errors import QueryValidationError
from toolquery.schemas.settings import DataSourceSettings

logger = logging.getLogger(__name__)


class TransportKind(str, Enum):
    STREAM = "stream"
    SSE = "sse"


@dataclass(frozen=True)
class ConnectionEndpoint:
    """Where and how to reach the MCP server for one datasource."""

    url: str
    transport: TransportKind
    timeout: float
    max_retries: int
    retry_interval: float
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: DataSourceSettings) -> "ConnectionEndpoint":
        raw = (settings.server_url or "").strip()
        if not raw:
            raise QueryValidationError("server URL is required")
        parsed = urlparse(raw)
        scheme = parsed.scheme.lower()
        if not parsed.netloc:
            raise QueryValidationError(f"invalid server URL: {raw!r}")

        if scheme in ("ws", "wss"):
            transport = TransportKind.STREAM
            parsed = parsed._replace(scheme="http" if scheme == "ws" else "https")
        elif scheme in ("http", "https"):
            transport = _transport_from_setting(settings.transport)
        else:
            raise QueryValidationError(
                f"unsupported URL scheme: {scheme or '(none)'} (supported: http, https, ws, wss)"
            )

        if transport is TransportKind.STREAM and parsed.path in ("", "/"):
            path = settings.stream_path if settings.stream_path.startswith("/") else "/" + settings.stream_path
            parsed = parsed._replace(path=path)

        endpoint = cls(
            url=urlunparse(parsed),
            transport=transport,
            timeout=float(settings.connection_timeout),
            max_retries=int(settings.max_retries),
            retry_interval=float(settings.retry_interval),
            headers=_build_headers(settings),
        )
        logger.info(
            "[endpoint:from_settings] OUT url=%s transport=%s timeout=%.1f max_retries=%d",
            endpoint.url, endpoint.transport.value, endpoint.timeout, endpoint.max_retries,
        )
        return endpoint


def _transport_from_setting(value: str) -> TransportKind:
    if not value:
        return TransportKind.SSE
    try:
        return TransportKind(value)
    except ValueError:
        raise QueryValidationError(f"unsupported transport: {value!r} (supported: stream, sse)") from None


def _build_headers(settings: DataSourceSettings) -> dict[str, str]:
    headers: dict[str, str] = {}
    auth = settings.auth_type or "none"
    if auth == "basic":
        if not settings.username:
            raise QueryValidationError("username is required for basic auth")
        token = base64.b64encode(f"{settings.username}:{settings.password}".encode()).decode()
        headers["Authorization"] = f"Basic {token}"
    elif auth == "bearer":
        if not settings.bearer_token:
            raise QueryValidationError("bearer token is required for bearer auth")
        headers["Authorization"] = f"Bearer {settings.bearer_token}"
    elif auth != "none":
        raise QueryValidationError(f"unsupported auth type: {auth!r} (supported: none, basic, bearer)")
    headers.update(settings.custom_headers or {})
    return headers
