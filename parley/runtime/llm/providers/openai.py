from __future__ import annotations

from typing import Any, AsyncIterator

import openai
from openai import AsyncOpenAI

from ..errors import wrap_provider_exception
from ..types import ChatRequest, LLMStreamEvent, LLMStreamEventKind, ProviderKind

OPENAI_MODELS: tuple[str, ...] = (
    "o3-pro",
    "o3",
    "o4-mini",
    "o3-mini",
    "o1-pro",
    "o1",
    "gpt-4.1",
    "gpt-4o",
    "gpt-4.1-mini",
    "gpt-4o-mini",
    "gpt-4.1-nano",
)


def _is_reasoning_model(model: str) -> bool:
    return model.startswith(("o1", "o3", "o4"))


def _build_payload(request: ChatRequest) -> dict[str, Any]:
    messages = [{"role": m.role.value, "content": m.content} for m in request.messages]
    payload: dict[str, Any] = {
        "model": request.model,
        "messages": messages,
        "stream": True,
    }
    if _is_reasoning_model(request.model):
        # Reasoning models reject sampling parameters.
        payload["max_completion_tokens"] = request.max_tokens
    else:
        payload["temperature"] = request.temperature
        payload["max_tokens"] = request.max_tokens
    return payload


class OpenAIProvider:
    kind = ProviderKind.OPENAI

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str | None = None,
        timeout_s: float | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0, timeout=timeout_s)

    def list_models(self) -> list[str]:
        return list(OPENAI_MODELS)

    async def stream_chat(self, request: ChatRequest) -> AsyncIterator[LLMStreamEvent]:
        payload = _build_payload(request)
        try:
            stream = await self._client.chat.completions.create(**payload)
        except openai.OpenAIError as e:
            raise wrap_provider_exception(
                e, provider_kind=self.kind, model=request.model, operation="stream"
            ) from e
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                reasoning = getattr(delta, "reasoning_content", None)
                if reasoning:
                    yield LLMStreamEvent(kind=LLMStreamEventKind.THINKING_DELTA, text=str(reasoning))
                content = getattr(delta, "content", None)
                if content:
                    yield LLMStreamEvent(kind=LLMStreamEventKind.TEXT_DELTA, text=content)
        except openai.OpenAIError as e:
            raise wrap_provider_exception(
                e, provider_kind=self.kind, model=request.model, operation="stream"
            ) from e
        finally:
            await stream.close()

    async def aclose(self) -> None:
        await self._client.close()
