"""Base provider adapter — abstract interface for all LLM providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from campaigngraph.models import ModelResponse

logger = logging.getLogger(__name__)

JSON_INSTRUCTION = "Respond with a single valid JSON object and nothing else."


class ProviderAdapter(ABC):
    """Translates between our message format and a provider-specific API."""

    @abstractmethod
    async def generate(
        self,
        messages: list[dict],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> ModelResponse:
        """Call the model and return a unified ModelResponse."""

    @abstractmethod
    def is_retryable(self, error: BaseException) -> bool:
        """Whether an exception raised by ``generate`` is transient."""


def is_transport_error(error: BaseException) -> bool:
    """Network-level failures from the shared httpx transport are always transient."""
    return isinstance(error, (httpx.TimeoutException, httpx.NetworkError))


class ModelProvider:
    """Unified interface — wraps a ProviderAdapter."""

    def __init__(self, adapter: ProviderAdapter):
        self.adapter = adapter

    async def generate(
        self,
        messages: list[dict],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> ModelResponse:
        return await self.adapter.generate(
            messages=messages,
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=json_mode,
        )

    def is_retryable(self, error: BaseException) -> bool:
        return is_transport_error(error) or self.adapter.is_retryable(error)
