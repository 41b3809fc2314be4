from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from app import llm_client
from app.config import settings
from app.errors import UpstreamCallError
from app.llm_client import AnthropicResearchClient, OpenRouterResearchClient


def test_anthropic_reply_joins_text_blocks():
    response = SimpleNamespace(
        content=[
            SimpleNamespace(type="server_tool_use", name="web_search"),
            SimpleNamespace(type="web_search_tool_result", content=[]),
            SimpleNamespace(type="text", text="VALUE: 4.1%"),
            SimpleNamespace(type="text", text="SOURCE: KNBS"),
        ],
        stop_reason="end_turn",
        usage=SimpleNamespace(input_tokens=1200, output_tokens=40),
    )

    reply = AnthropicResearchClient._from_response(response)

    assert reply.text == "VALUE: 4.1%\nSOURCE: KNBS"
    assert reply.stop_reason == "end_turn"
    assert (reply.usage.input_tokens, reply.usage.output_tokens) == (1200, 40)


def test_anthropic_malformed_envelope():
    with pytest.raises(UpstreamCallError):
        AnthropicResearchClient._from_response(SimpleNamespace(content=None))


@pytest.mark.asyncio
async def test_anthropic_request_carries_web_search_tool():
    sdk = MagicMock()
    sdk.messages.create = AsyncMock(
        return_value=SimpleNamespace(content=[], stop_reason="end_turn", usage=None)
    )

    await AnthropicResearchClient(sdk).research("q", model="m", max_tokens=500, max_searches=3)

    kwargs = sdk.messages.create.await_args.kwargs
    assert kwargs["tools"] == [{"type": "web_search_20250305", "name": "web_search", "max_uses": 3}]
    assert kwargs["max_tokens"] == 500
    assert kwargs["messages"] == [{"role": "user", "content": "q"}]


def test_openrouter_reply_mapping():
    response = SimpleNamespace(
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(content="  NOT_FOUND \n"), finish_reason="stop"
            )
        ],
        usage=SimpleNamespace(prompt_tokens=90, completion_tokens=3),
    )

    reply = OpenRouterResearchClient._from_response(response)

    assert reply.text == "NOT_FOUND"
    assert reply.stop_reason == "stop"
    assert reply.usage.input_tokens == 90


@pytest.mark.parametrize(
    "response",
    [
        SimpleNamespace(choices=[]),
        SimpleNamespace(choices=None),
        SimpleNamespace(choices=[SimpleNamespace(message=None, finish_reason=None)]),
    ],
)
def test_openrouter_malformed_envelope(response):
    with pytest.raises(UpstreamCallError):
        OpenRouterResearchClient._from_response(response)


@pytest.mark.asyncio
async def test_openrouter_request_enables_web_plugin():
    sdk = MagicMock()
    sdk.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="x"), finish_reason="stop")],
            usage=None,
        )
    )

    await OpenRouterResearchClient(sdk).research("q", model="m", max_tokens=500, max_searches=2)

    kwargs = sdk.chat.completions.create.await_args.kwargs
    assert kwargs["extra_body"] == {"plugins": [{"id": "web", "max_results": 2}]}


def test_get_model_follows_provider(monkeypatch):
    monkeypatch.setattr(settings, "research_provider", "anthropic")
    monkeypatch.setattr(settings, "research_model", "claude-sonnet-4-5")
    monkeypatch.setattr(settings, "openrouter_model", "anthropic/claude-sonnet-4.5:online")
    assert llm_client.get_model() == "claude-sonnet-4-5"

    monkeypatch.setattr(settings, "research_provider", "openrouter")
    assert llm_client.get_model() == "anthropic/claude-sonnet-4.5:online"

    monkeypatch.setattr(settings, "openrouter_model", "")
    assert llm_client.get_model() == "claude-sonnet-4-5"


def test_get_client_rejects_unknown_provider(monkeypatch):
    monkeypatch.setattr(settings, "research_provider", "carrier-pigeon")
    with pytest.raises(ValueError, match="carrier-pigeon"):
        llm_client.get_client()


def test_get_client_builds_provider_wrappers(monkeypatch):
    monkeypatch.setattr(settings, "anthropic_api_key", "test-key")
    monkeypatch.setattr(settings, "openrouter_api_key", "test-key")

    monkeypatch.setattr(settings, "research_provider", "anthropic")
    assert isinstance(llm_client.get_client(), AnthropicResearchClient)

    monkeypatch.setattr(settings, "research_provider", "OpenRouter")
    assert isinstance(llm_client.get_client(), OpenRouterResearchClient)
