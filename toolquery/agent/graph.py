"""
LangGraph agent: connect → list_tools → decide → (explain | invoke_tool → summarize) → END.

One tool call per query. A dropped stream during list_tools is retried on a fresh
session, and one during the tool call invalidates the session. Errors in connect,
list_tools, decide and explain abort the query; a failed tool call is recorded in the
result; a failed summary falls back to a fixed template.
"""

import logging
from datetime import datetime, timezone
from typing import Literal, TypedDict

from langgraph.graph import END, StateGraph

from toolquery.agent.llm import ReasoningProvider
from toolquery.agent.prompts import FALLBACK_SUMMARY, explain_prompt, summary_prompt
from toolquery.agent.tools import ToolCatalog, ToolInvoker
from toolquery.connection.client import SessionHandle
from toolquery.connection.session_manager import SessionManager, acquire_with_retry, run_with_session
from toolquery.core.errors import QueryValidationError, ReasoningError
from toolquery.schemas.tools import QueryResult, ToolDescriptor, ToolInvocation, ToolOutcome

logger = logging.getLogger(__name__)


class QueryState(TypedDict, total=False):
    query: str
    handle: SessionHandle
    tools: list[ToolDescriptor]
    invocation: ToolInvocation | None
    outcome: ToolOutcome | None
    summary: str


class QueryOrchestrator:
    """
    Runs the end-to-end pipeline for one natural-language query.

    Usage:
        orchestrator = QueryOrchestrator(sessions, ToolCatalog(), MockProvider(), ToolInvoker())
        result = await orchestrator.process("show me error logs")
    """

    def __init__(
        self,
        sessions: SessionManager,
        catalog: ToolCatalog,
        provider: ReasoningProvider,
        invoker: ToolInvoker,
    ) -> None:
        self.sessions = sessions
        self.catalog = catalog
        self.provider = provider
        self.invoker = invoker
        self._graph = self._build_graph()

    def _build_graph(self):
        graph = StateGraph(QueryState)

        graph.add_node("connect", self._connect)
        graph.add_node("list_tools", self._list_tools)
        graph.add_node("decide", self._decide)
        graph.add_node("explain", self._explain)
        graph.add_node("invoke_tool", self._invoke_tool)
        graph.add_node("summarize", self._summarize)

        graph.set_entry_point("connect")
        graph.add_edge("connect", "list_tools")
        graph.add_edge("list_tools", "decide")
        graph.add_conditional_edges("decide", self._route_after_decide)
        graph.add_edge("explain", END)
        graph.add_edge("invoke_tool", "summarize")
        graph.add_edge("summarize", END)

        return graph.compile()

    async def process(self, query: str) -> QueryResult:
        if not query or not query.strip():
            raise QueryValidationError("query is required")
        logger.info("[graph:process] START query=%r provider=%s", query, self.provider.name)
        final = await self._graph.ainvoke({"query": query})
        invocation = final.get("invocation")
        outcome = final.get("outcome")
        result = QueryResult(
            query=query,
            tool_calls=[invocation] if invocation else [],
            results=[outcome] if outcome else [],
            summary=final.get("summary") or "",
            processed_at=datetime.now(timezone.utc),
        )
        logger.info(
            "[graph:process] END tool_calls=%d summary_len=%d", len(result.tool_calls), len(result.summary)
        )
        return result

    async def _connect(self, state: QueryState) -> dict:
        endpoint = self.sessions.endpoint
        handle = await acquire_with_retry(self.sessions, endpoint.max_retries, endpoint.retry_interval)
        return {"handle": handle}

    async def _list_tools(self, state: QueryState) -> dict:
        async def fetch(handle: SessionHandle) -> tuple[SessionHandle, list[ToolDescriptor]]:
            return handle, await self.catalog.list_tools(handle)

        endpoint = self.sessions.endpoint
        handle, tools = await run_with_session(self.sessions, fetch, endpoint.max_retries, endpoint.retry_interval)
        return {"handle": handle, "tools": tools}

    async def _decide(self, state: QueryState) -> dict:
        invocation = await self.provider.decide(state["query"], state["tools"])
        logger.info("[graph:decide] OUT tool=%s", invocation.tool_name if invocation else None)
        return {"invocation": invocation}

    def _route_after_decide(self, state: QueryState) -> Literal["explain", "invoke_tool"]:
        return "explain" if state.get("invocation") is None else "invoke_tool"

    async def _explain(self, state: QueryState) -> dict:
        summary = await self.provider.respond(explain_prompt(state["query"], state["tools"]))
        return {"summary": summary}

    async def _invoke_tool(self, state: QueryState) -> dict:
        handle = state["handle"]
        outcome, transport_error = await self.invoker.call(handle, state["invocation"])
        if transport_error is not None:
            await self.sessions.invalidate(handle, outcome.error)
        return {"outcome": outcome}

    async def _summarize(self, state: QueryState) -> dict:
        query, invocation = state["query"], state["invocation"]
        try:
            summary = await self.provider.respond(summary_prompt(query, [invocation], [state["outcome"]]))
        except ReasoningError as e:
            logger.warning("[graph:summarize] provider failed, using fallback: %s", e.message)
            summary = FALLBACK_SUMMARY.format(tool=invocation.tool_name, query=query)
        return {"summary": summary}
