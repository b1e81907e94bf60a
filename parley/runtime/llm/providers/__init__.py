from __future__ import annotations

from ..types import ProviderKind
from .anthropic import AnthropicProvider
from .base import ChatProvider, ProviderFactory, ProviderRegistry
from .gemini import GeminiProvider
from .openai import OpenAIProvider

PROVIDER_FACTORIES: dict[ProviderKind, ProviderFactory] = {
    ProviderKind.OPENAI: OpenAIProvider,
    ProviderKind.ANTHROPIC: AnthropicProvider,
    ProviderKind.GEMINI: GeminiProvider,
}


def create_provider(kind: ProviderKind, *, api_key: str, timeout_s: float | None = None) -> ChatProvider:
    factory = PROVIDER_FACTORIES[kind]
    return factory(api_key=api_key, timeout_s=timeout_s)


def build_registry(api_keys: dict[ProviderKind, str], *, timeout_s: float | None = None) -> ProviderRegistry:
    registry = ProviderRegistry()
    for kind in (ProviderKind.ANTHROPIC, ProviderKind.OPENAI, ProviderKind.GEMINI):
        key = api_keys.get(kind)
        if key:
            registry.register(kind.value, create_provider(kind, api_key=key, timeout_s=timeout_s))
    return registry


__all__ = [
    "AnthropicProvider",
    "ChatProvider",
    "GeminiProvider",
    "OpenAIProvider",
    "PROVIDER_FACTORIES",
    "ProviderRegistry",
    "build_registry",
    "create_provider",
]
