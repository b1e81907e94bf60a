from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ProviderKind(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


class ChatRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    role: ChatRole
    content: str


@dataclass(frozen=True)
class ChatRequest:
    model: str
    messages: list[ChatMessage]
    temperature: float = 0.7
    max_tokens: int = 4096
    thinking_enabled: bool = False
    thinking_budget: int = 20000

    @property
    def system(self) -> str | None:
        parts = [m.content for m in self.messages if m.role is ChatRole.SYSTEM]
        return "\n\n".join(parts) if parts else None

    def conversation(self) -> list[ChatMessage]:
        return [m for m in self.messages if m.role is not ChatRole.SYSTEM]


class LLMStreamEventKind(StrEnum):
    TEXT_DELTA = "text_delta"
    THINKING_DELTA = "thinking_delta"


@dataclass(frozen=True)
class LLMStreamEvent:
    kind: LLMStreamEventKind
    text: str = ""


_MODEL_PREFIXES: tuple[tuple[str, ProviderKind], ...] = (
    ("claude-", ProviderKind.ANTHROPIC),
    ("gpt-", ProviderKind.OPENAI),
    ("o1", ProviderKind.OPENAI),
    ("o3", ProviderKind.OPENAI),
    ("o4", ProviderKind.OPENAI),
    ("gemini-", ProviderKind.GEMINI),
)


def provider_for_model(model: str) -> ProviderKind | None:
    name = model.strip().lower()
    for prefix, kind in _MODEL_PREFIXES:
        if name.startswith(prefix):
            return kind
    return None
