from __future__ import annotations

import json
from typing import Any, AsyncIterator

import httpx

from ..client_httpx_errors import _wrap_httpx_like_exception
from ..errors import LLMErrorCode, LLMRequestError
from ..types import ChatRequest, ChatRole, LLMStreamEvent, LLMStreamEventKind, ProviderKind

GEMINI_MODELS: tuple[str, ...] = (
    "gemini-2.5-pro",
    "gemini-2.5-flash",
    "gemini-2.5-flash-lite",
)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _build_payload(request: ChatRequest) -> dict[str, Any]:
    contents: list[dict[str, Any]] = []
    for msg in request.conversation():
        role = "model" if msg.role is ChatRole.ASSISTANT else "user"
        contents.append({"role": role, "parts": [{"text": msg.content}]})

    generation_config: dict[str, Any] = {
        "temperature": request.temperature,
        "maxOutputTokens": request.max_tokens,
    }
    if request.thinking_enabled:
        generation_config["thinkingConfig"] = {
            "thinkingBudget": request.thinking_budget,
            "includeThoughts": True,
        }

    payload: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
    system = request.system
    if system:
        payload["systemInstruction"] = {"parts": [{"text": system}]}
    return payload


def _events_from_chunk(data: dict[str, Any]) -> list[LLMStreamEvent]:
    out: list[LLMStreamEvent] = []
    for candidate in data.get("candidates") or []:
        content = candidate.get("content") or {}
        for part in content.get("parts") or []:
            text = part.get("text")
            if not text:
                continue
            if part.get("thought"):
                out.append(LLMStreamEvent(kind=LLMStreamEventKind.THINKING_DELTA, text=text))
            else:
                out.append(LLMStreamEvent(kind=LLMStreamEventKind.TEXT_DELTA, text=text))
        # Only the first candidate is rendered.
        break
    return out


class GeminiProvider:
    kind = ProviderKind.GEMINI

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    def list_models(self) -> list[str]:
        return list(GEMINI_MODELS)

    def _url(self, model: str) -> str:
        return f"{self._base_url}/models/{model}:streamGenerateContent"

    async def stream_chat(self, request: ChatRequest) -> AsyncIterator[LLMStreamEvent]:
        headers = {"Content-Type": "application/json", "x-goog-api-key": self._api_key}
        try:
            async with self._client.stream(
                "POST",
                self._url(request.model),
                params={"alt": "sse"},
                headers=headers,
                json=_build_payload(request),
            ) as response:
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    try:
                        response.raise_for_status()
                    except httpx.HTTPStatusError as e:
                        raise _wrap_httpx_like_exception(
                            e, provider_kind=self.kind, model=request.model, operation="stream", body=body
                        ) from e
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    raw = line[len("data:") :].strip()
                    if not raw:
                        continue
                    try:
                        data = json.loads(raw)
                    except json.JSONDecodeError as e:
                        raise LLMRequestError(
                            f"Malformed stream chunk: {raw[:200]}",
                            code=LLMErrorCode.RESPONSE_VALIDATION,
                            provider_kind=self.kind,
                            model=request.model,
                            retryable=False,
                            details={"operation": "stream"},
                            cause=e,
                        ) from e
                    for event in _events_from_chunk(data):
                        yield event
        except httpx.HTTPError as e:
            raise _wrap_httpx_like_exception(
                e, provider_kind=self.kind, model=request.model, operation="stream"
            ) from e

    async def aclose(self) -> None:
        await self._client.aclose()
