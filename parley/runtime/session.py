from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from .config import DEFAULT_MAX_TOKENS, DEFAULT_THINKING_BUDGET
from .ids import format_ts_ms, new_id, now_ts_ms
from .llm.types import ChatMessage, ChatRole

AUTO_NAME_FORMAT = "%Y-%m-%d_%H:%M:%S"

_FENCE_RE = re.compile(r"```([^\n`]*)\n(.*?)```", re.DOTALL)


class SessionRangeError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class Turn:
    number: int
    role: ChatRole
    content: str
    created_at: int
    provider: str | None = None
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "number": self.number,
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at,
        }
        if self.provider is not None:
            out["provider"] = self.provider
        if self.model is not None:
            out["model"] = self.model
        return out

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> "Turn":
        return Turn(
            number=int(raw["number"]),
            role=ChatRole(str(raw["role"])),
            content=str(raw["content"]),
            created_at=int(raw["created_at"]),
            provider=str(raw["provider"]) if raw.get("provider") is not None else None,
            model=str(raw["model"]) if raw.get("model") is not None else None,
        )


@dataclass(frozen=True, slots=True)
class CodeBlock:
    turn_number: int
    index: int
    language: str
    code: str


@dataclass(slots=True)
class Session:
    """
    One conversation: an ordered log of turns plus the settings used to extend it.

    Turn numbers are contiguous from 1. Every mutation advances `updated_at`.
    """

    session_id: str
    model: str
    temperature: float
    created_at: int
    updated_at: int
    provider: str | None = None
    name: str | None = None
    system_prompt: str | None = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    thinking_enabled: bool = False
    thinking_budget: int = DEFAULT_THINKING_BUDGET
    has_llm_interaction: bool = False
    turns: list[Turn] = field(default_factory=list)

    @staticmethod
    def create(model: str, temperature: float, *, provider: str | None = None) -> "Session":
        now = now_ts_ms()
        return Session(
            session_id=new_id("chat"),
            model=model,
            temperature=temperature,
            created_at=now,
            updated_at=now,
            provider=provider,
        )

    def __len__(self) -> int:
        return len(self.turns)

    def touch(self) -> None:
        # Never move backwards, even if the wall clock does.
        self.updated_at = max(now_ts_ms(), self.updated_at + 1)

    def append(self, role: ChatRole, content: str) -> int:
        number = len(self.turns) + 1
        self.turns.append(Turn(number=number, role=role, content=content, created_at=now_ts_ms()))
        self.touch()
        return number

    def append_with_attribution(self, content: str, *, provider: str, model: str) -> int:
        number = len(self.turns) + 1
        self.turns.append(
            Turn(
                number=number,
                role=ChatRole.ASSISTANT,
                content=content,
                created_at=now_ts_ms(),
                provider=provider,
                model=model,
            )
        )
        self.has_llm_interaction = True
        self.touch()
        return number

    def undo(self, count: int = 1) -> list[Turn]:
        if count < 1:
            raise SessionRangeError(f"Undo count must be at least 1, got {count}")
        if count > len(self.turns):
            raise SessionRangeError(f"Cannot undo {count} messages, only {len(self.turns)} available")
        removed = self.turns[-count:]
        del self.turns[-count:]
        self.touch()
        return removed

    def goto(self, index: int) -> list[Turn]:
        if index < 1 or index > len(self.turns):
            raise SessionRangeError(f"Invalid message number: {index} (valid range: 1-{len(self.turns)})")
        removed = self.turns[index:]
        del self.turns[index:]
        self.touch()
        return removed

    def retract_last_if_unpaired(self) -> Turn | None:
        if not self.turns or self.turns[-1].role is not ChatRole.USER:
            return None
        removed = self.turns.pop()
        self.touch()
        return removed

    def last_user_turn(self) -> Turn | None:
        for turn in reversed(self.turns):
            if turn.role is ChatRole.USER:
                return turn
        return None

    def messages(self) -> list[ChatMessage]:
        out: list[ChatMessage] = []
        if self.system_prompt:
            out.append(ChatMessage(role=ChatRole.SYSTEM, content=self.system_prompt))
        out.extend(ChatMessage(role=t.role, content=t.content) for t in self.turns)
        return out

    def code_blocks(self) -> list[CodeBlock]:
        blocks: list[CodeBlock] = []
        for turn in self.turns:
            if turn.role is not ChatRole.ASSISTANT:
                continue
            for m in _FENCE_RE.finditer(turn.content):
                blocks.append(
                    CodeBlock(
                        turn_number=turn.number,
                        index=len(blocks) + 1,
                        language=m.group(1).strip(),
                        code=m.group(2).rstrip("\n"),
                    )
                )
        return blocks

    def merge(self, other: "Session") -> int:
        """Append `other`'s turns, renumbered to follow this log. Returns the count appended."""
        base = len(self.turns)
        for offset, turn in enumerate(other.turns, start=1):
            self.turns.append(
                Turn(
                    number=base + offset,
                    role=turn.role,
                    content=turn.content,
                    created_at=turn.created_at,
                    provider=turn.provider,
                    model=turn.model,
                )
            )
        if other.turns:
            self.has_llm_interaction = self.has_llm_interaction or other.has_llm_interaction
            self.touch()
        return len(other.turns)

    def fork(self) -> "Session":
        now = now_ts_ms()
        return Session(
            session_id=new_id("chat"),
            model=self.model,
            temperature=self.temperature,
            created_at=now,
            updated_at=now,
            provider=self.provider,
            name=None,
            system_prompt=self.system_prompt,
            max_tokens=self.max_tokens,
            thinking_enabled=self.thinking_enabled,
            thinking_budget=self.thinking_budget,
            has_llm_interaction=self.has_llm_interaction,
            turns=list(self.turns),
        )

    def auto_name(self) -> str:
        return format_ts_ms(self.created_at, AUTO_NAME_FORMAT)

    def should_auto_save(self) -> bool:
        return self.name is None and self.has_llm_interaction and bool(self.turns)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "name": self.name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "model": self.model,
            "provider": self.provider,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "system_prompt": self.system_prompt,
            "thinking_enabled": self.thinking_enabled,
            "thinking_budget": self.thinking_budget,
            "has_llm_interaction": self.has_llm_interaction,
            "turns": [t.to_dict() for t in self.turns],
        }

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> "Session":
        turns = [Turn.from_dict(t) for t in raw.get("turns") or []]
        # Tolerate hand-edited files: numbering is re-derived from position.
        turns = [
            t if t.number == i else Turn(i, t.role, t.content, t.created_at, t.provider, t.model)
            for i, t in enumerate(turns, start=1)
        ]
        return Session(
            session_id=str(raw["session_id"]),
            name=str(raw["name"]) if raw.get("name") is not None else None,
            created_at=int(raw["created_at"]),
            updated_at=int(raw["updated_at"]),
            model=str(raw["model"]),
            provider=str(raw["provider"]) if raw.get("provider") is not None else None,
            temperature=float(raw.get("temperature", 0.7)),
            max_tokens=int(raw.get("max_tokens", DEFAULT_MAX_TOKENS)),
            system_prompt=str(raw["system_prompt"]) if raw.get("system_prompt") is not None else None,
            thinking_enabled=bool(raw.get("thinking_enabled", False)),
            thinking_budget=int(raw.get("thinking_budget", DEFAULT_THINKING_BUDGET)),
            has_llm_interaction=bool(raw.get("has_llm_interaction", False)),
            turns=turns,
        )
