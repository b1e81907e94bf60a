from __future__ import annotations

from typing import AsyncIterator, Callable, Protocol

from ..errors import LLMErrorCode, LLMRequestError
from ..types import ChatRequest, LLMStreamEvent, ProviderKind, provider_for_model


class ChatProvider(Protocol):
    """
    One streaming chat backend.

    Implementations perform a single attempt per `stream_chat` call: no retries, no backoff,
    no cancellation handling. Failures surface as `LLMRequestError`. Closing the returned
    iterator early must release the underlying connection.
    """

    kind: ProviderKind

    def stream_chat(self, request: ChatRequest) -> AsyncIterator[LLMStreamEvent]: ...

    def list_models(self) -> list[str]: ...

    async def aclose(self) -> None: ...


ProviderFactory = Callable[..., ChatProvider]


class ProviderRegistry:
    """Name-keyed set of configured providers."""

    def __init__(self, providers: dict[str, ChatProvider] | None = None) -> None:
        self._providers: dict[str, ChatProvider] = dict(providers or {})

    def register(self, name: str, provider: ChatProvider) -> None:
        self._providers[name] = provider

    def names(self) -> list[str]:
        return list(self._providers)

    def has(self, name: str) -> bool:
        return name in self._providers

    def get(self, name: str) -> ChatProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise LLMRequestError(
                f"Provider not configured: {name}",
                code=LLMErrorCode.AUTH,
                retryable=False,
                details={"operation": "lookup", "provider": name},
            )
        return provider

    def name_for_model(self, model: str) -> str | None:
        kind = provider_for_model(model)
        if kind is not None and kind.value in self._providers:
            return kind.value
        for name, provider in self._providers.items():
            if model in provider.list_models():
                return name
        return None

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
