"""Test provider factory and adapters."""

import anthropic
import httpx
import openai
import pytest

from campaigngraph.providers import anthropic_provider, factory, openai_provider
from campaigngraph.providers.anthropic_provider import AnthropicAdapter
from campaigngraph.providers.base import ModelProvider, is_transport_error
from campaigngraph.providers.factory import create_adapter, create_provider, parse_model_string
from campaigngraph.providers.openai_provider import OpenAIAdapter

_REQUEST = httpx.Request("POST", "https://example.invalid/v1")


@pytest.fixture(autouse=True)
def fake_api_keys(monkeypatch):
    """SDK clients refuse to construct without a key; no request is ever sent."""
    monkeypatch.setattr(anthropic_provider, "ANTHROPIC_API_KEY", "sk-ant-test")
    monkeypatch.setattr(openai_provider, "OPENAI_API_KEY", "sk-test")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)


def _status_error(module, cls, status):
    response = httpx.Response(status, request=_REQUEST)
    return getattr(module, cls)("error", response=response, body=None)


def test_parse_model_string():
    assert parse_model_string("anthropic/claude-sonnet-4-5") == ("anthropic", "claude-sonnet-4-5")
    assert parse_model_string("openai/gpt-4o") == ("openai", "gpt-4o")
    assert parse_model_string("claude-sonnet-4-5") == ("anthropic", "claude-sonnet-4-5")
    assert parse_model_string("gpt-4o") == ("openai", "gpt-4o")


def test_create_adapter():
    adapter = create_adapter("anthropic/claude-sonnet-4-5")
    assert isinstance(adapter, AnthropicAdapter)
    assert adapter.model == "claude-sonnet-4-5"

    adapter = create_adapter("openai/gpt-4o")
    assert isinstance(adapter, OpenAIAdapter)

    assert isinstance(create_provider("gpt-4o"), ModelProvider)

    with pytest.raises(ValueError):
        create_adapter("mystery/model-x")


def test_available_vendors(monkeypatch):
    monkeypatch.setattr(factory, "ANTHROPIC_API_KEY", "")
    monkeypatch.setattr(factory, "OPENAI_API_KEY", "sk-test")
    assert factory.available_vendors() == ["openai"]


def test_transport_errors():
    assert is_transport_error(httpx.ConnectError("refused"))
    assert is_transport_error(httpx.ReadTimeout("slow"))
    assert not is_transport_error(ValueError("nope"))


def test_anthropic_retryable():
    adapter = AnthropicAdapter()
    assert adapter.is_retryable(_status_error(anthropic, "RateLimitError", 429))
    assert adapter.is_retryable(_status_error(anthropic, "InternalServerError", 500))
    assert adapter.is_retryable(anthropic.APIConnectionError(request=_REQUEST))
    assert not adapter.is_retryable(_status_error(anthropic, "BadRequestError", 400))
    assert not adapter.is_retryable(_status_error(anthropic, "AuthenticationError", 401))
    assert not adapter.is_retryable(ValueError("nope"))


def test_openai_retryable():
    adapter = OpenAIAdapter()
    assert adapter.is_retryable(_status_error(openai, "RateLimitError", 429))
    assert adapter.is_retryable(openai.APIConnectionError(request=_REQUEST))
    assert not adapter.is_retryable(_status_error(openai, "BadRequestError", 400))


def test_model_provider_classifies_transport_errors_first():
    provider = ModelProvider(AnthropicAdapter())
    assert provider.is_retryable(httpx.ConnectTimeout("timeout"))
    assert not provider.is_retryable(KeyError("x"))
