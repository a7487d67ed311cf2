"""Anthropic (Claude) provider adapter."""

from __future__ import annotations

import logging
from typing import Any

import anthropic

from campaigngraph.config import ANTHROPIC_API_KEY
from campaigngraph.models import ModelResponse, TokenUsage
from campaigngraph.providers.base import JSON_INSTRUCTION, ProviderAdapter

logger = logging.getLogger(__name__)

_RETRYABLE = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,  # includes APITimeoutError
    anthropic.InternalServerError,
)


class AnthropicAdapter(ProviderAdapter):
    def __init__(self, model: str = "claude-sonnet-4-5-20250929"):
        self.model = model
        self.client = anthropic.AsyncAnthropic(api_key=ANTHROPIC_API_KEY)

    async def generate(
        self,
        messages: list[dict],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> ModelResponse:
        # No native JSON mode; ask for it in the system prompt
        if json_mode:
            system = f"{system}\n\n{JSON_INSTRUCTION}" if system else JSON_INSTRUCTION

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": self._format_messages(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system

        try:
            raw = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise

        return self._parse_response(raw)

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, _RETRYABLE):
            return True
        # 408 request timeout, 409 lock conflict, 529 overloaded
        if isinstance(error, anthropic.APIStatusError):
            return error.status_code in (408, 409) or error.status_code >= 500
        return False

    def _format_messages(self, messages: list[dict]) -> list[dict]:
        """Convert our internal format to Anthropic's format."""
        formatted = []
        for msg in messages:
            role = msg.get("role", "user")
            if role == "system":
                continue  # system messages go via the system parameter
            if role == "assistant":
                formatted.append({"role": "assistant", "content": str(msg.get("content", ""))})
            else:
                formatted.append({"role": "user", "content": str(msg.get("content", ""))})
        return formatted

    def _parse_response(self, raw: Any) -> ModelResponse:
        text_parts = [block.text for block in raw.content if block.type == "text"]
        return ModelResponse(
            text="\n".join(text_parts) if text_parts else None,
            usage=TokenUsage(raw.usage.input_tokens, raw.usage.output_tokens),
            stop_reason=raw.stop_reason,
            raw=raw,
        )
