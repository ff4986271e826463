"""
API route aggregator: register endpoints and delegate to handlers and the datasource.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request

from toolquery.api.handlers import handle_query, handle_tools
from toolquery.schemas.query import QueryRequest, QueryResponse
from toolquery.services.datasource import DataSource

logger = logging.getLogger(__name__)
router = APIRouter()


def get_datasource(request: Request) -> DataSource:
    """The DataSource built by the app lifespan."""
    return request.app.state.datasource


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "MCP query backend running"}


@router.get("/health", tags=["system"], summary="Session status and tool count")
async def health(datasource: DataSource = Depends(get_datasource)) -> dict[str, Any]:
    return await datasource.health()


# --- Resources ---

@router.get("/tools", tags=["resources"], summary="Tools the MCP server currently advertises")
async def get_tools(datasource: DataSource = Depends(get_datasource)) -> list[dict[str, Any]]:
    return await handle_tools(datasource)


@router.get("/servers", tags=["resources"], summary="Configured MCP server and connection state")
def get_servers(datasource: DataSource = Depends(get_datasource)) -> dict[str, Any]:
    return datasource.servers()


# --- Query ---

@router.post(
    "/query",
    response_model=QueryResponse,
    tags=["query"],
    summary="Run a natural_language, tool_call or list_tools query",
    description="Returns frames for the query. 400 on invalid input, 500 on connection, protocol or reasoning failure.",
)
async def post_query(body: QueryRequest, datasource: DataSource = Depends(get_datasource)) -> QueryResponse:
    logger.info("[api:post_query] IN  ref_id=%s type=%s", body.ref_id, body.query_type)
    response = await handle_query(datasource, body)
    logger.info("[api:post_query] OUT ref_id=%s frames=%d", response.ref_id, len(response.frames))
    return response
