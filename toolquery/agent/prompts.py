"""
Prompt templates and formatters for the reasoning backends.

Responsibility: the text sent to a ReasoningProvider. Kept apart from the graph
so providers (decision prompt) and the orchestrator (explain/summarize) share
one catalog format.
"""

import json
from collections.abc import Sequence

from toolquery.schemas.tools import ToolDescriptor, ToolInvocation, ToolOutcome

DECISION_PROMPT = """You are an intelligent agent that selects appropriate tools to answer user queries.

User Query: {query}

Available Tools:
{tools}

Please analyze the query and determine if any tools should be called. If a tool should be called, respond with a JSON object in this exact format:
{{
  "tool_name": "name_of_tool",
  "arguments": {{"key": "value"}},
  "reasoning": "explanation of why this tool was chosen"
}}

If no tools are needed, respond with: {{"no_tool_needed": true}}

For log-related queries, use these LogQL patterns:
- Error logs: {{level="error"}}
- Warning logs: {{level="warn"}}
- All logs: {{job=~".+"}}
- Specific service: {{service="myservice"}}

Response:"""

EXPLAIN_PROMPT = (
    "The user asked: {query}\n\n"
    "Available tools: {tools}\n\n"
    "Provide a helpful response explaining what tools are available."
)

SUMMARY_PROMPT = """
User Query: {query}

Tools Called:
{calls}

Results:
{results}

Please provide a clear, concise summary of what was accomplished and the key findings.
"""

FALLBACK_SUMMARY = "Executed tool '{tool}' for query: {query}"


def format_tools(tools: Sequence[ToolDescriptor]) -> str:
    return "\n".join(f"- {t.name}: {t.description}" for t in tools)


def format_tool_calls(calls: Sequence[ToolInvocation]) -> str:
    return "\n".join(f"- {c.tool_name} (args: {json.dumps(c.arguments)}): {c.reasoning}" for c in calls)


def format_results(results: Sequence[ToolOutcome]) -> str:
    lines = []
    for r in results:
        if r.success:
            data = r.data if isinstance(r.data, str) else json.dumps(r.data)
            lines.append(f"- {r.tool_name}: SUCCESS - {data}")
        else:
            lines.append(f"- {r.tool_name}: ERROR - {r.error}")
    return "\n".join(lines)


def decision_prompt(query: str, tools: Sequence[ToolDescriptor]) -> str:
    return DECISION_PROMPT.format(query=query, tools=format_tools(tools))


def explain_prompt(query: str, tools: Sequence[ToolDescriptor]) -> str:
    return EXPLAIN_PROMPT.format(query=query, tools=format_tools(tools))


def summary_prompt(query: str, calls: Sequence[ToolInvocation], results: Sequence[ToolOutcome]) -> str:
    return SUMMARY_PROMPT.format(query=query, calls=format_tool_calls(calls), results=format_results(results))
