"""
API handlers: call the datasource and map QueryError to HTTP.

Responsibility: Bridge HTTP types and services. Exception-to-HTTP mapping lives here
so the datasource and agent stay free of FastAPI/HTTP types.
"""

import logging
from typing import Any

from fastapi import HTTPException

from toolquery.core.errors import BAD_REQUEST, QueryError
from toolquery.schemas.query import QueryRequest, QueryResponse
from toolquery.services.datasource import DataSource

logger = logging.getLogger(__name__)


def to_http_error(e: QueryError) -> HTTPException:
    """bad_request errors become 400, everything else 500."""
    status_code = 400 if e.status == BAD_REQUEST else 500
    if status_code == 500:
        logger.error("[api] %s: %s", type(e).__name__, e.message)
    return HTTPException(status_code=status_code, detail=e.message)


async def handle_query(datasource: DataSource, body: QueryRequest) -> QueryResponse:
    try:
        return await datasource.run_query(body)
    except QueryError as e:
        raise to_http_error(e) from e


async def handle_tools(datasource: DataSource) -> list[dict[str, Any]]:
    try:
        return await datasource.tools()
    except QueryError as e:
        raise HTTPException(status_code=500, detail=f"Failed to list tools: {e.message}") from e
