"""Build model providers from "vendor/model" strings."""

from __future__ import annotations

from campaigngraph.config import ANTHROPIC_API_KEY, OPENAI_API_KEY
from campaigngraph.providers.base import ModelProvider, ProviderAdapter

# vendor -> model name prefixes that imply it when no vendor is given
VENDOR_PREFIXES: dict[str, tuple[str, ...]] = {
    "anthropic": ("claude",),
    "openai": ("gpt", "o1", "o3", "o4"),
}


def parse_model_string(model: str) -> tuple[str, str]:
    """Split 'vendor/model-name'. A bare model name is matched by prefix, falling back to anthropic."""
    if "/" in model:
        vendor, model_name = model.split("/", 1)
        return vendor.lower(), model_name
    for vendor, prefixes in VENDOR_PREFIXES.items():
        if model.startswith(prefixes):
            return vendor, model
    return "anthropic", model


def available_vendors() -> list[str]:
    """Vendors with an API key configured."""
    keys = {"anthropic": ANTHROPIC_API_KEY, "openai": OPENAI_API_KEY}
    return [vendor for vendor, key in keys.items() if key]


def create_adapter(model: str) -> ProviderAdapter:
    vendor, model_name = parse_model_string(model)

    if vendor == "anthropic":
        from campaigngraph.providers.anthropic_provider import AnthropicAdapter
        return AnthropicAdapter(model=model_name)
    if vendor == "openai":
        from campaigngraph.providers.openai_provider import OpenAIAdapter
        return OpenAIAdapter(model=model_name)
    raise ValueError(f"Unknown provider: {vendor}. Use one of: {', '.join(f'{v}/model' for v in VENDOR_PREFIXES)}")


def create_provider(model: str) -> ModelProvider:
    return ModelProvider(create_adapter(model))
