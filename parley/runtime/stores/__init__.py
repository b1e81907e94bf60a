from __future__ import annotations

from .base import SessionStore, SessionStoreError, SessionSummary
from .fs import FileSessionStore

__all__ = [
    "FileSessionStore",
    "SessionStore",
    "SessionStoreError",
    "SessionSummary",
]
