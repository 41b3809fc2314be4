"""Research client factory for Anthropic (web search tool) and OpenRouter (web plugin)."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.config import settings
from app.errors import UpstreamCallError


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ResearchReply:
    text: str
    stop_reason: str | None = None
    usage: Usage = field(default_factory=Usage)


class AnthropicResearchClient:
    """Runs a research prompt with Anthropic's server-side web search tool."""

    provider = "anthropic"

    def __init__(self, anthropic_client: Any):
        self._client = anthropic_client

    @staticmethod
    def _web_search_tool(max_searches: int) -> dict[str, Any]:
        return {
            "type": "web_search_20250305",
            "name": "web_search",
            "max_uses": max(int(max_searches), 1),
        }

    @staticmethod
    def _from_response(response: Any) -> ResearchReply:
        content = getattr(response, "content", None)
        if not isinstance(content, list):
            raise UpstreamCallError("Malformed response envelope: missing content blocks")

        text_parts = [
            block.text
            for block in content
            if getattr(block, "type", None) == "text" and getattr(block, "text", None)
        ]
        usage = getattr(response, "usage", None)
        return ResearchReply(
            text="\n".join(text_parts).strip(),
            stop_reason=getattr(response, "stop_reason", None),
            usage=Usage(
                input_tokens=getattr(usage, "input_tokens", 0) or 0,
                output_tokens=getattr(usage, "output_tokens", 0) or 0,
            ),
        )

    async def research(
        self,
        prompt: str,
        *,
        model: str,
        max_tokens: int,
        max_searches: int,
    ) -> ResearchReply:
        response = await self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
            tools=[self._web_search_tool(max_searches)],
        )
        return self._from_response(response)


class OpenRouterResearchClient:
    """Runs a research prompt through OpenRouter with its web plugin enabled."""

    provider = "openrouter"

    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _from_response(response: Any) -> ResearchReply:
        choices = getattr(response, "choices", None) or []
        if not choices:
            raise UpstreamCallError("Malformed response envelope: no choices returned")
        choice = choices[0]
        message = getattr(choice, "message", None)
        if message is None:
            raise UpstreamCallError("Malformed response envelope: choice has no message")

        usage = getattr(response, "usage", None)
        return ResearchReply(
            text=(getattr(message, "content", None) or "").strip(),
            stop_reason=getattr(choice, "finish_reason", None),
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )

    async def research(
        self,
        prompt: str,
        *,
        model: str,
        max_tokens: int,
        max_searches: int,
    ) -> ResearchReply:
        response = await self._client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            extra_body={"plugins": [{"id": "web", "max_results": max(int(max_searches), 1)}]},
        )
        return self._from_response(response)


ResearchClient = AnthropicResearchClient | OpenRouterResearchClient


def get_client() -> ResearchClient:
    """Build the research client for the configured provider."""
    provider = settings.research_provider.lower().strip()

    if provider == "anthropic":
        import anthropic

        return AnthropicResearchClient(
            anthropic.AsyncAnthropic(
                api_key=settings.anthropic_api_key,
                timeout=settings.research_timeout_seconds,
                max_retries=settings.research_max_retries,
            )
        )

    if provider == "openrouter":
        from openai import AsyncOpenAI

        base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
        return OpenRouterResearchClient(
            AsyncOpenAI(
                api_key=settings.openrouter_api_key,
                base_url=base_url,
                timeout=settings.research_timeout_seconds,
                max_retries=settings.research_max_retries,
            )
        )

    raise ValueError(f"Unsupported RESEARCH_PROVIDER: {settings.research_provider}")


def get_model() -> str:
    """Get the model id for the configured provider."""
    if settings.research_provider.lower().strip() == "openrouter" and settings.openrouter_model:
        return settings.openrouter_model
    return settings.research_model


_client: ResearchClient | None = None


def client() -> ResearchClient:
    """Get or create the research client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
