"""OpenAI (GPT-4, o3) provider adapter."""

from __future__ import annotations

import logging
from typing import Any

import openai

from campaigngraph.config import OPENAI_API_KEY
from campaigngraph.models import ModelResponse, TokenUsage
from campaigngraph.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

_RETRYABLE = (
    openai.RateLimitError,
    openai.APIConnectionError,  # includes APITimeoutError
    openai.InternalServerError,
)


class OpenAIAdapter(ProviderAdapter):
    def __init__(self, model: str = "gpt-4o"):
        self.model = model
        self.client = openai.AsyncOpenAI(api_key=OPENAI_API_KEY)

    async def generate(
        self,
        messages: list[dict],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": self._format_messages(messages, system),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            raw = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise

        return self._parse_response(raw)

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, _RETRYABLE):
            return True
        if isinstance(error, openai.APIStatusError):
            return error.status_code in (408, 409) or error.status_code >= 500
        return False

    def _format_messages(self, messages: list[dict], system: str | None = None) -> list[dict]:
        formatted = []
        if system:
            formatted.append({"role": "system", "content": system})

        for msg in messages:
            role = msg.get("role", "user")
            if role not in ("system", "assistant"):
                role = "user"
            formatted.append({"role": role, "content": str(msg.get("content", ""))})
        return formatted

    def _parse_response(self, raw: Any) -> ModelResponse:
        choice = raw.choices[0]
        return ModelResponse(
            text=choice.message.content,
            usage=TokenUsage(raw.usage.prompt_tokens, raw.usage.completion_tokens),
            stop_reason=choice.finish_reason,
            raw=raw,
        )
