from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    NOTICE = "notice"
    OPERATION_FAILED = "operation_failed"
    OPERATION_CANCELLED = "operation_cancelled"

    USER_TURN_APPENDED = "user_turn_appended"

    LLM_REQUEST_STARTED = "llm_request_started"
    LLM_THINKING_DELTA = "llm_thinking_delta"
    LLM_RESPONSE_DELTA = "llm_response_delta"
    LLM_RESPONSE_COMPLETED = "llm_response_completed"
    LLM_ATTEMPT_FAILED = "llm_attempt_failed"
    LLM_RETRY_SCHEDULED = "llm_retry_scheduled"
    LLM_REQUEST_FAILED = "llm_request_failed"

    SESSION_CHANGED = "session_changed"
    SESSION_PERSISTED = "session_persisted"
    SESSION_PERSIST_FAILED = "session_persist_failed"

    CLEAR_SCREEN = "clear_screen"
    EXIT_REQUESTED = "exit_requested"


@dataclass(frozen=True, slots=True)
class Event:
    kind: str
    payload: dict[str, Any]
    session_id: str
    event_id: str
    timestamp: int
    request_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "kind": self.kind,
            "payload": self.payload,
            "session_id": self.session_id,
            "event_id": self.event_id,
            "timestamp": self.timestamp,
        }
        if self.request_id is not None:
            out["request_id"] = self.request_id
        return out
