"""
Reasoning providers: offline mock (default), Anthropic messages API, or OpenAI chat completions.

Every provider offers two operations:
- respond(prompt): free text for a single-turn prompt.
- decide(query, tools): which tool to call (a ToolInvocation) or None when no tool is needed.

The provider is chosen once per datasource by create_provider(settings).
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from toolquery.agent.prompts import decision_prompt
from toolquery.core.config import (
    ANTHROPIC_DEFAULT_MODEL,
    ANTHROPIC_MESSAGES_URL,
    ANTHROPIC_VERSION,
    LLM_API_TIMEOUT,
    LLM_MAX_TOKENS,
    OPENAI_DEFAULT_MODEL,
)
from toolquery.core.errors import ReasoningError
from toolquery.schemas.settings import DataSourceSettings
from toolquery.schemas.tools import ToolDescriptor, ToolInvocation

logger = logging.getLogger(__name__)


class ReasoningProvider(ABC):
    """Capability interface shared by all reasoning backends."""

    name: str = ""

    @abstractmethod
    async def respond(self, prompt: str) -> str:
        ...

    @abstractmethod
    async def decide(self, query: str, tools: Sequence[ToolDescriptor]) -> ToolInvocation | None:
        ...


# --- Mock ---

MOCK_ERROR_RESPONSE = (
    "I encountered an error while processing your request. "
    "Please check the tool execution results for more details."
)
MOCK_TOOLS_RESPONSE = (
    "I can help you with various tasks using the available tools. "
    "The tools can query data, analyze logs, and provide insights based on your requests."
)
MOCK_GENERIC_RESPONSE = (
    "I've processed your request using the available tools. "
    "The results show the information you requested."
)

LOG_INTENT_KEYWORDS = ("log", "search", "query", "find", "error")
LOG_TOOL_KEYWORD = "loki"
ERROR_LOGQL = '{level="error"}'
WARN_LOGQL = '{level="warn"}'
ALL_LOGQL = '{job=~".+"}'
MOCK_LOG_LIMIT = 100


class MockProvider(ReasoningProvider):
    """Deterministic stand-in: keyword heuristics, canned responses, no network. Never fails."""

    name = "mock"

    async def respond(self, prompt: str) -> str:
        lowered = prompt.lower()
        if "error" in lowered:
            return MOCK_ERROR_RESPONSE
        if "tools" in lowered:
            return MOCK_TOOLS_RESPONSE
        return MOCK_GENERIC_RESPONSE

    async def decide(self, query: str, tools: Sequence[ToolDescriptor]) -> ToolInvocation | None:
        if not tools:
            return None
        lowered = query.lower()
        if any(k in lowered for k in LOG_INTENT_KEYWORDS):
            for tool in tools:
                if LOG_TOOL_KEYWORD not in tool.name.lower():
                    continue
                if "error" in lowered:
                    logql = ERROR_LOGQL
                elif "warn" in lowered:
                    logql = WARN_LOGQL
                else:
                    logql = ALL_LOGQL
                return ToolInvocation(
                    tool_name=tool.name,
                    arguments={"query": logql, "limit": MOCK_LOG_LIMIT},
                    reasoning=(
                        f"The user's query '{query}' appears to be asking for log data, "
                        f"so I'll use the {tool.name} tool to search for relevant logs."
                    ),
                )
        first = tools[0]
        return ToolInvocation(
            tool_name=first.name,
            arguments={},
            reasoning=f"I'll use the {first.name} tool to help answer your query: {query}",
        )


# --- Remote completion backends ---


def _load_object(text: str) -> dict[str, Any]:
    value = json.loads(text)
    if not isinstance(value, dict):
        raise ValueError("decision is not a JSON object")
    return value


def parse_decision(reply: str) -> ToolInvocation | None:
    """
    Parse a JSON decision from model output: the whole reply first, then the
    substring from the first '{' to the last '}'. Nothing more permissive.
    """
    try:
        result = _load_object(reply)
    except ValueError:
        start, end = reply.find("{"), reply.rfind("}")
        if start < 0 or end <= start:
            raise ReasoningError(f"no valid JSON found in response: {reply!r}") from None
        try:
            result = _load_object(reply[start:end + 1])
        except ValueError as e:
            raise ReasoningError(f"failed to parse tool selection response: {e}") from e

    if result.get("no_tool_needed") is True:
        return None
    tool_name = result.get("tool_name")
    if not isinstance(tool_name, str) or not tool_name:
        raise ReasoningError("invalid tool_name in response")
    arguments = result.get("arguments")
    reasoning = result.get("reasoning")
    return ToolInvocation(
        tool_name=tool_name,
        arguments=arguments if isinstance(arguments, dict) else {},
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )


class CompletionProvider(ReasoningProvider):
    """Shared decide() for backends that only need to implement respond()."""

    async def decide(self, query: str, tools: Sequence[ToolDescriptor]) -> ToolInvocation | None:
        logger.info("[llm:%s:decide] IN  query=%r tools=%d", self.name, query, len(tools))
        try:
            reply = await self.respond(decision_prompt(query, tools))
        except ReasoningError as e:
            raise ReasoningError(f"failed to get tool selection from {self.name}: {e.message}") from e
        invocation = parse_decision(reply)
        logger.info(
            "[llm:%s:decide] OUT tool=%s", self.name, invocation.tool_name if invocation else None
        )
        return invocation


class _AnthropicSegment(BaseModel):
    type: str = "text"
    text: str = ""


class _AnthropicUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class _AnthropicResponse(BaseModel):
    content: list[_AnthropicSegment] = []
    usage: _AnthropicUsage = _AnthropicUsage()


class AnthropicProvider(CompletionProvider):
    """Claude via the raw messages API over httpx."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = "",
        max_tokens: int = LLM_MAX_TOKENS,
        url: str = ANTHROPIC_MESSAGES_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Anthropic API key is required")
        self.api_key = api_key
        self.model = model or ANTHROPIC_DEFAULT_MODEL
        self.max_tokens = max_tokens
        self.url = url
        self._transport = transport

    async def respond(self, prompt: str) -> str:
        logger.info("[llm:anthropic] IN  prompt_len=%d model=%s", len(prompt), self.model)
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        try:
            async with httpx.AsyncClient(timeout=LLM_API_TIMEOUT, transport=self._transport) as client:
                response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ReasoningError(f"Anthropic request failed: {e}") from e
        if response.status_code != 200:
            raise ReasoningError(
                f"Anthropic API request failed with status {response.status_code}: {response.text[:200]}"
            )
        try:
            body = _AnthropicResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise ReasoningError(f"failed to parse Anthropic response: {e}") from e
        if not body.content or not body.content[0].text:
            raise ReasoningError("no content in Anthropic response")
        out = body.content[0].text
        logger.info(
            "[llm:anthropic] OUT response_len=%d input_tokens=%d output_tokens=%d",
            len(out), body.usage.input_tokens, body.usage.output_tokens,
        )
        return out


class OpenAIProvider(CompletionProvider):
    """OpenAI chat completions through the official async client."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "",
        max_tokens: int = LLM_MAX_TOKENS,
        client: Any = None,
    ) -> None:
        if not api_key and client is None:
            raise ValueError("OpenAI API key is required")
        self.model = model or OPENAI_DEFAULT_MODEL
        self.max_tokens = max_tokens
        if client is None:
            from openai import AsyncOpenAI

            client = AsyncOpenAI(api_key=api_key, timeout=LLM_API_TIMEOUT)
        self._client = client

    async def respond(self, prompt: str) -> str:
        from openai import OpenAIError

        logger.info("[llm:openai] IN  prompt_len=%d model=%s", len(prompt), self.model)
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            raise ReasoningError(f"OpenAI request failed: {e}") from e
        msg = response.choices[0].message if response.choices else None
        out = (getattr(msg, "content", None) or "").strip()
        if not out:
            raise ReasoningError("no content in OpenAI response")
        usage = getattr(response, "usage", None)
        logger.info(
            "[llm:openai] OUT response_len=%d prompt_tokens=%s completion_tokens=%s",
            len(out), getattr(usage, "prompt_tokens", None), getattr(usage, "completion_tokens", None),
        )
        return out


def create_provider(settings: DataSourceSettings) -> ReasoningProvider:
    """Pick the reasoning backend for a datasource. Raises ValueError on bad configuration."""
    kind = settings.llm_provider or "mock"
    logger.info("[llm:create_provider] provider=%s model=%s", kind, settings.llm_model or "(default)")
    if kind == "mock":
        return MockProvider()
    if kind == "anthropic":
        return AnthropicProvider(api_key=settings.llm_api_key, model=settings.llm_model)
    if kind == "openai":
        return OpenAIProvider(api_key=settings.llm_api_key, model=settings.llm_model)
    raise ValueError(f"unsupported LLM provider: {kind!r} (supported: mock, openai, anthropic)")
