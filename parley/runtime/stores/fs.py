from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from ..session import Session
from .base import SessionStore, SessionStoreError, SessionSummary

logger = logging.getLogger(__name__)

CURRENT_FILENAME = "current.json"
SAVED_DIRNAME = "saved"


def _replace_surrogates(text: str) -> str:
    out: list[str] = []
    changed = False
    for ch in text:
        o = ord(ch)
        if 0xD800 <= o <= 0xDFFF:
            out.append("\uFFFD")
            changed = True
        else:
            out.append(ch)
    return "".join(out) if changed else text


def _sanitize_json_value(value: Any) -> Any:
    if isinstance(value, str):
        return _replace_surrogates(value)
    if isinstance(value, list):
        return [_sanitize_json_value(v) for v in value]
    if isinstance(value, dict):
        out: dict[Any, Any] = {}
        for k, v in value.items():
            key = _replace_surrogates(k) if isinstance(k, str) else k
            out[key] = _sanitize_json_value(v)
        return out
    return value


def _safe_write_json(path: Path, obj: Any) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(
        json.dumps(_sanitize_json_value(obj), ensure_ascii=False, sort_keys=True, indent=2),
        encoding="utf-8",
        errors="backslashreplace",
    )
    tmp.replace(path)


def _copy(session: Session) -> Session:
    return Session.from_dict(session.to_dict())


def _summary(name: str, session: Session) -> SessionSummary:
    return SessionSummary(
        name=name,
        session_id=session.session_id,
        turn_count=len(session.turns),
        model=session.model,
        created_at=session.created_at,
        updated_at=session.updated_at,
    )


class FileSessionStore(SessionStore):
    """
    JSON-file session store.

    Saved sessions live in `<root>/saved/<quoted-name>.json`, the current-session slot in
    `<root>/current.json`. Mutations are held in memory until `persist()`; stored values are
    copies, so later edits to a live session do not leak into a saved one.
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._saved_dir = root / SAVED_DIRNAME
        self._saved_dir.mkdir(parents=True, exist_ok=True)
        self._saved: dict[str, Session] = {}
        self._dirty: set[str] = set()
        self._deleted: set[str] = set()
        self._current: Session | None = None
        self._current_dirty = False
        self._load()

    def _path(self, name: str) -> Path:
        return self._saved_dir / f"{quote(name, safe='')}.json"

    def _load(self) -> None:
        for path in sorted(self._saved_dir.glob("*.json")):
            name = unquote(path.stem)
            try:
                self._saved[name] = Session.from_dict(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("skipping unreadable session file %s: %s", path, e)
        current_path = self._root / CURRENT_FILENAME
        if current_path.exists():
            try:
                self._current = Session.from_dict(json.loads(current_path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("ignoring unreadable current session %s: %s", current_path, e)

    def get(self, name: str) -> Session | None:
        session = self._saved.get(name)
        return _copy(session) if session is not None else None

    def put(self, name: str, session: Session) -> None:
        self._saved[name] = _copy(session)
        self._dirty.add(name)
        self._deleted.discard(name)

    def delete(self, name: str) -> bool:
        if self._saved.pop(name, None) is None:
            return False
        self._dirty.discard(name)
        self._deleted.add(name)
        return True

    def list(self) -> list[SessionSummary]:
        return [_summary(name, s) for name, s in sorted(self._saved.items())]

    def get_current(self) -> Session | None:
        return _copy(self._current) if self._current is not None else None

    def set_current(self, session: Session) -> None:
        self._current = _copy(session)
        self._current_dirty = True

    def persist(self) -> None:
        try:
            for name in sorted(self._deleted):
                self._path(name).unlink(missing_ok=True)
            self._deleted.clear()
            for name in sorted(self._dirty):
                _safe_write_json(self._path(name), self._saved[name].to_dict())
            self._dirty.clear()
            if self._current_dirty and self._current is not None:
                _safe_write_json(self._root / CURRENT_FILENAME, self._current.to_dict())
                self._current_dirty = False
        except OSError as e:
            raise SessionStoreError(f"Failed to persist sessions under {self._root}: {e}") from e
