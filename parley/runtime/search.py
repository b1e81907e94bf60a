from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .llm.types import ChatRole
from .session import Session

CURRENT_LABEL = "current"

EXCERPT_LENGTH = 120
CONTEXT_LENGTH = 40


@dataclass(frozen=True, slots=True)
class SearchHit:
    session_label: str
    turn_number: int
    role: ChatRole
    excerpt: str


def make_excerpt(content: str, term: str) -> str:
    """
    Cut a window of roughly `CONTEXT_LENGTH` characters around the first match of `term`,
    snapping to word boundaries, with the match wrapped in `**`.
    """

    flat = " ".join(content.split())
    lower = flat.lower()
    start = lower.find(term.lower()) if term else -1
    if start < 0:
        return flat if len(flat) <= EXCERPT_LENGTH else flat[:EXCERPT_LENGTH] + "..."
    end = start + len(term)

    lo = 0
    if start > CONTEXT_LENGTH:
        lo = start - CONTEXT_LENGTH
        space = flat.find(" ", lo, start)
        if space >= 0:
            lo = space + 1
    hi = len(flat)
    if hi > end + CONTEXT_LENGTH:
        hi = end + CONTEXT_LENGTH
        space = flat.rfind(" ", end, hi)
        if space >= 0:
            hi = space

    excerpt = ("..." if lo > 0 else "") + flat[lo:start] + "**" + flat[start:end] + "**" + flat[end:hi]
    if hi < len(flat):
        excerpt += "..."
    if len(excerpt) > EXCERPT_LENGTH + 20:
        excerpt = excerpt[:EXCERPT_LENGTH] + "..."
    return excerpt


def _search_session(label: str, session: Session, needle: str) -> list[SearchHit]:
    return [
        SearchHit(session_label=label, turn_number=t.number, role=t.role, excerpt=make_excerpt(t.content, needle))
        for t in session.turns
        if needle.lower() in t.content.lower()
    ]


def search_sessions(term: str, *, current: Session, saved: Iterable[tuple[str, Session]]) -> list[SearchHit]:
    """Case-insensitive search; current session first, then saved sessions by name."""
    needle = term.strip()
    if not needle:
        return []
    hits = _search_session(CURRENT_LABEL, current, needle)
    for name, session in sorted(saved, key=lambda item: item[0]):
        if session.session_id == current.session_id:
            continue
        hits.extend(_search_session(name, session, needle))
    return hits
