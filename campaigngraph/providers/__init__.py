"""Provider adapter layer — model-agnostic LLM interface."""

from campaigngraph.providers.base import ModelProvider, ProviderAdapter
from campaigngraph.providers.factory import create_provider

__all__ = ["ModelProvider", "ProviderAdapter", "create_provider"]
