from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..session import Session


class SessionStoreError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class SessionSummary:
    name: str
    session_id: str
    turn_count: int
    model: str
    created_at: int
    updated_at: int


class SessionStore(ABC):
    @abstractmethod
    def get(self, name: str) -> Session | None: ...

    @abstractmethod
    def put(self, name: str, session: Session) -> None: ...

    @abstractmethod
    def delete(self, name: str) -> bool: ...

    @abstractmethod
    def list(self) -> list[SessionSummary]: ...

    @abstractmethod
    def get_current(self) -> Session | None: ...

    @abstractmethod
    def set_current(self, session: Session) -> None: ...

    @abstractmethod
    def persist(self) -> None: ...

    def names(self) -> list[str]:
        return [s.name for s in self.list()]

    def recent(self, limit: int = 10) -> list[SessionSummary]:
        items = sorted(self.list(), key=lambda s: (s.updated_at, s.created_at), reverse=True)
        return items[:limit]

    def most_recent(self) -> SessionSummary | None:
        items = self.recent(1)
        return items[0] if items else None
