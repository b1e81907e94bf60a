from __future__ import annotations

import shutil
import sys
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")
THOUGHT_PREVIEW_CHARS = 50
ANSWER_PREFIX = "Assistant: "
WAITING_LABEL = "Thinking"


class UIEventKind(str, Enum):
    SESSION_STARTED = "session_started"
    CLEAR_SCREEN = "clear_screen"

    LLM_REQUEST_STARTED = "llm_request_started"
    THINKING_DELTA = "thinking_delta"
    ASSISTANT_DELTA = "assistant_delta"
    ASSISTANT_COMPLETED = "assistant_completed"

    NOTICE = "notice"
    WARNING = "warning"
    ERROR_RAISED = "error_raised"
    CANCELLED = "cancelled"

    EXIT_REQUESTED = "exit_requested"


@dataclass(frozen=True, slots=True)
class UIEvent:
    kind: UIEventKind
    payload: dict


def _char_width(ch: str) -> int:
    if unicodedata.combining(ch):
        return 0
    return 2 if unicodedata.east_asian_width(ch) in {"W", "F"} else 1


def display_width(s: str) -> int:
    return sum(_char_width(ch) for ch in s)


def clip_head(s: str, width: int) -> str:
    """Keep the longest prefix of `s` that fits in `width` terminal cells."""
    used = 0
    for i, ch in enumerate(s):
        used += _char_width(ch)
        if used > width:
            return s[:i]
    return s


def clip_tail(s: str, width: int) -> str:
    """Keep the end of `s` within `width` cells, marking the cut with an ellipsis."""
    if width <= 0:
        return ""
    if display_width(s) <= width:
        return s
    used = 1
    start = len(s)
    while start > 0 and used + _char_width(s[start - 1]) <= width:
        start -= 1
        used += _char_width(s[start])
    return "…" + s[start:]


class ConsoleUI:
    """
    Line-mode renderer for UI events.

    Events arrive on the event-loop thread and are written immediately. While a request is
    pending a one-line status ("Thinking", plus the tail of any streamed reasoning) is redrawn
    in place; the first answer token replaces it. Without a terminal the status is printed once.
    """

    def __init__(self, *, stream=None, enable_color: bool = True) -> None:
        self._out = stream if stream is not None else sys.stdout
        self._tty = bool(getattr(self._out, "isatty", lambda: False)())
        self._color = enable_color and self._tty

        self._pending = False
        self._frame = 0
        self._thoughts = ""
        self._status_printed = False

        self._answer_open = False
        self._answer_has_text = False
        self._at_line_start = True
        self._newline_run = 0

        self._handlers: dict[UIEventKind, Callable[[dict[str, Any]], None]] = {
            UIEventKind.SESSION_STARTED: self._on_session_started,
            UIEventKind.CLEAR_SCREEN: self._on_clear_screen,
            UIEventKind.LLM_REQUEST_STARTED: self._on_request_started,
            UIEventKind.THINKING_DELTA: self._on_thinking,
            UIEventKind.ASSISTANT_DELTA: self._on_answer,
            UIEventKind.ASSISTANT_COMPLETED: self._on_answer_completed,
            UIEventKind.NOTICE: self._on_notice,
            UIEventKind.WARNING: self._on_warning,
            UIEventKind.ERROR_RAISED: self._on_error,
            UIEventKind.CANCELLED: self._on_cancelled,
            UIEventKind.EXIT_REQUESTED: self._on_exit,
        }

    def emit(self, event: UIEvent) -> None:
        self._handlers[event.kind](event.payload)

    def print_header(self, *, session_label: str, model: str) -> None:
        self.emit(UIEvent(UIEventKind.SESSION_STARTED, {"session": session_label, "model": model}))

    # --- handlers ---
    def _on_session_started(self, p: dict[str, Any]) -> None:
        self._line(self._style(f"Session: {p.get('session', '')}  Model: {p.get('model', '')}", "2"))
        self._line(self._style("Type /help for commands. Ctrl+C interrupts a response, Ctrl+D exits.", "2"))

    def _on_clear_screen(self, p: dict[str, Any]) -> None:
        self._settle()
        self._write("\x1b[2J\x1b[H" if self._tty else "\n")

    def _on_request_started(self, p: dict[str, Any]) -> None:
        self._close_answer()
        self._pending = True
        self._frame = 0
        self._thoughts = ""
        self._status_printed = False
        self._draw_status()

    def _on_thinking(self, p: dict[str, Any]) -> None:
        if not self._pending:
            return
        text = str(p.get("text") or "")
        self._thoughts = (self._thoughts + text)[-120:]
        self._draw_status()

    def _on_answer(self, p: dict[str, Any]) -> None:
        text = str(p.get("text") or "")
        if not text:
            return
        self._erase_status()
        if not self._answer_open:
            self._write(self._style(ANSWER_PREFIX, "1;36"))
            self._answer_open = True
            self._answer_has_text = False
            self._at_line_start = False
            self._newline_run = 0
        if not self._answer_has_text:
            text = text.lstrip("\n")
        text = self._squeeze_newlines(text)
        if not text:
            return
        self._write(text)
        self._answer_has_text = True
        self._at_line_start = text.endswith("\n")

    def _on_answer_completed(self, p: dict[str, Any]) -> None:
        self._settle()

    def _on_notice(self, p: dict[str, Any]) -> None:
        self._settle()
        message = str(p.get("message") or "")
        if message:
            self._line(message)
        for extra in p.get("lines") or []:
            self._line(f"  {extra}")

    def _on_warning(self, p: dict[str, Any]) -> None:
        self._settle()
        self._line(self._style(f"[warn] {p.get('message', '')}", "33"))

    def _on_error(self, p: dict[str, Any]) -> None:
        self._settle()
        code = str(p.get("code") or "")
        message = str(p.get("message") or "")
        self._line(self._style(f"[error] {code}: {message}" if code else f"[error] {message}", "31"))

    def _on_cancelled(self, p: dict[str, Any]) -> None:
        self._settle()
        self._line(self._style(f"[cancel] {p.get('message') or 'cancelled'}", "33"))

    def _on_exit(self, p: dict[str, Any]) -> None:
        self._settle()

    # --- status line ---
    def _draw_status(self) -> None:
        if not self._pending:
            return
        if not self._tty:
            if not self._status_printed:
                self._line(self._style(f"{WAITING_LABEL}…", "2"))
                self._status_printed = True
            return
        frame = SPINNER_FRAMES[self._frame % len(SPINNER_FRAMES)]
        self._frame += 1
        columns = max(20, shutil.get_terminal_size((80, 20)).columns - 1)
        head = f"{frame} {WAITING_LABEL}"
        preview = " ".join(self._thoughts.split())
        room = min(THOUGHT_PREVIEW_CHARS, columns - display_width(head) - 3)
        status = f"{head} ({clip_tail(preview, room)})" if preview and room > 0 else f"{head}…"
        self._write("\r\x1b[2K" + self._style(clip_head(status, columns), "2"))

    def _erase_status(self) -> None:
        if not self._pending:
            return
        self._pending = False
        if self._tty:
            self._write("\r\x1b[2K")

    # --- answer framing ---
    def _close_answer(self) -> None:
        if not self._answer_open:
            return
        if not self._at_line_start:
            self._write("\n")
        self._answer_open = False
        self._at_line_start = True
        self._newline_run = 0

    def _settle(self) -> None:
        self._erase_status()
        self._close_answer()

    def _squeeze_newlines(self, text: str) -> str:
        # At most one blank line between paragraphs, across delta boundaries.
        kept: list[str] = []
        for ch in text.replace("\r", ""):
            if ch == "\n":
                self._newline_run += 1
                if self._newline_run > 2:
                    continue
            else:
                self._newline_run = 0
            kept.append(ch)
        return "".join(kept)

    # --- output ---
    def _style(self, s: str, sgr: str) -> str:
        return f"\x1b[{sgr}m{s}\x1b[0m" if self._color else s

    def _write(self, s: str) -> None:
        self._out.write(s)
        self._out.flush()

    def _line(self, s: str = "") -> None:
        self._write(s + "\n")
