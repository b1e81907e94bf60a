from __future__ import annotations

from typing import Any, AsyncIterator

import anthropic
from anthropic import AsyncAnthropic

from ..errors import wrap_provider_exception
from ..types import ChatRequest, LLMStreamEvent, LLMStreamEventKind, ProviderKind

ANTHROPIC_MODELS: tuple[str, ...] = (
    "claude-sonnet-4-20250514",
    "claude-opus-4-20250514",
    "claude-3-7-sonnet-20250219",
    "claude-3-5-sonnet-20241022",
    "claude-3-5-haiku-20241022",
    "claude-3-5-sonnet-20240620",
)

_THINKING_MODEL_MARKERS = ("opus-4", "sonnet-4", "3-7-sonnet")

# Output allowance on top of the thinking budget.
_THINKING_OUTPUT_HEADROOM = 5000


def supports_thinking(model: str) -> bool:
    return any(marker in model for marker in _THINKING_MODEL_MARKERS)


def _build_payload(request: ChatRequest) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": request.model,
        "messages": [{"role": m.role.value, "content": m.content} for m in request.conversation()],
        "max_tokens": request.max_tokens,
        "temperature": request.temperature,
    }
    system = request.system
    if system:
        payload["system"] = system
    if request.thinking_enabled and supports_thinking(request.model):
        budget = request.thinking_budget
        payload["thinking"] = {"type": "enabled", "budget_tokens": budget}
        payload["max_tokens"] = max(request.max_tokens, budget + _THINKING_OUTPUT_HEADROOM)
        # Extended thinking only accepts temperature 1.
        payload["temperature"] = 1.0
    return payload


class AnthropicProvider:
    kind = ProviderKind.ANTHROPIC

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str | None = None,
        timeout_s: float | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self._client = client or AsyncAnthropic(api_key=api_key, base_url=base_url, max_retries=0, timeout=timeout_s)

    def list_models(self) -> list[str]:
        return list(ANTHROPIC_MODELS)

    async def stream_chat(self, request: ChatRequest) -> AsyncIterator[LLMStreamEvent]:
        payload = _build_payload(request)
        try:
            async with self._client.messages.stream(**payload) as stream:
                async for event in stream:
                    if getattr(event, "type", None) != "content_block_delta":
                        continue
                    delta = event.delta
                    dtype = getattr(delta, "type", None)
                    if dtype == "text_delta" and delta.text:
                        yield LLMStreamEvent(kind=LLMStreamEventKind.TEXT_DELTA, text=delta.text)
                    elif dtype == "thinking_delta" and delta.thinking:
                        yield LLMStreamEvent(kind=LLMStreamEventKind.THINKING_DELTA, text=delta.thinking)
        except anthropic.AnthropicError as e:
            raise wrap_provider_exception(
                e, provider_kind=self.kind, model=request.model, operation="stream"
            ) from e

    async def aclose(self) -> None:
        await self._client.close()
