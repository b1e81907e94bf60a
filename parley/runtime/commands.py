from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable

from .config import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, DEFAULT_THINKING_BUDGET

COMMAND_SIGIL = "/"


class CommandKind(StrEnum):
    LIST_MODELS = "list_models"
    LIST_PROVIDERS = "list_providers"
    STATUS = "status"
    STATS = "stats"
    HELP = "help"
    CLEAR = "clear"
    QUIT = "quit"

    MODEL = "model"
    PROVIDER = "provider"
    TEMPERATURE = "temperature"
    MAX_TOKENS = "max_tokens"
    SYSTEM = "system"
    THINKING = "thinking"
    THINKING_TOGGLE = "thinking_toggle"
    THINKING_BUDGET = "thinking_budget"

    HISTORY = "history"
    UNDO = "undo"
    GOTO = "goto"
    SEARCH = "search"
    RETRY = "retry"
    BLOCKS = "blocks"
    BLOCK = "block"
    EXPORT = "export"

    CHAT_NEW = "chat_new"
    CHAT_LIST = "chat_list"
    CHAT_RECENT = "chat_recent"
    CHAT_SAVE = "chat_save"
    CHAT_LOAD = "chat_load"
    CHAT_DELETE = "chat_delete"
    CHAT_CONTINUE = "chat_continue"
    CHAT_FORK = "chat_fork"
    CHAT_BRANCH = "chat_branch"
    CHAT_MERGE = "chat_merge"
    CHAT_RENAME = "chat_rename"
    CHAT_NAME = "chat_name"

    INPUT_HISTORY = "input_history"
    INPUT_HISTORY_CLEAR = "input_history_clear"
    INPUT_HISTORY_STATS = "input_history_stats"


class SessionRefKind(StrEnum):
    NAME = "name"
    INDEX = "index"
    INVALID = "invalid"


@dataclass(frozen=True, slots=True)
class SessionRef:
    """How a command names a saved session: by name, or by `#N` into the last listing."""

    kind: SessionRefKind
    raw: str
    name: str | None = None
    index: int | None = None


@dataclass(frozen=True, slots=True)
class Command:
    kind: CommandKind
    text: str | None = None
    number: int | None = None
    value: float | None = None
    flag: bool | None = None
    ref: SessionRef | None = None


def _is_quoted(s: str) -> bool:
    return len(s) >= 2 and s[0] == s[-1] and s[0] in {'"', "'"}


def unquote_name(raw: str) -> str:
    """Strip surrounding whitespace and one pair of matching quotes."""
    s = raw.strip()
    return s[1:-1] if _is_quoted(s) else s


def parse_session_ref(raw: str) -> SessionRef:
    s = raw.strip()
    if _is_quoted(s):
        return SessionRef(kind=SessionRefKind.NAME, raw=s, name=s[1:-1])
    if s.startswith("#"):
        digits = s[1:]
        if digits.isdigit():
            return SessionRef(kind=SessionRefKind.INDEX, raw=s, index=int(digits))
        return SessionRef(kind=SessionRefKind.INVALID, raw=s)
    return SessionRef(kind=SessionRefKind.NAME, raw=s, name=s)


def _int_or(raw: str | None, default: int) -> int:
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        return default


def _float_or(raw: str | None, default: float) -> float:
    try:
        return float(raw) if raw is not None else default
    except ValueError:
        return default


_LITERALS: dict[str, Command] = {
    "/models": Command(CommandKind.LIST_MODELS),
    "/providers": Command(CommandKind.LIST_PROVIDERS),
    "/status": Command(CommandKind.STATUS),
    "/stats": Command(CommandKind.STATS),
    "/chat new": Command(CommandKind.CHAT_NEW),
    "/chat list": Command(CommandKind.CHAT_LIST),
    "/chat recent": Command(CommandKind.CHAT_RECENT),
    "/history": Command(CommandKind.HISTORY),
    "/blocks": Command(CommandKind.BLOCKS),
    "/help": Command(CommandKind.HELP),
    "/commands": Command(CommandKind.HELP),
    "/clear": Command(CommandKind.CLEAR),
    "/retry": Command(CommandKind.RETRY),
    "/system": Command(CommandKind.SYSTEM, text=""),
    "/thinking": Command(CommandKind.THINKING_TOGGLE),
    "/input-history": Command(CommandKind.INPUT_HISTORY),
    "/input-history clear": Command(CommandKind.INPUT_HISTORY_CLEAR),
    "/input-history stats": Command(CommandKind.INPUT_HISTORY_STATS),
    "/quit": Command(CommandKind.QUIT),
    "/exit": Command(CommandKind.QUIT),
}

_Builder = Callable[[re.Match[str], float], Command]


def _optional_ref(group: str | None) -> SessionRef | None:
    if group is None or not group.strip():
        return None
    return parse_session_ref(group)


# A name that may be followed by another argument: quoted (spaces allowed) or one word.
_LEADING_NAME = r"(\"[^\"]*\"|'[^']*'|\S+)"

_PATTERNS: list[tuple[re.Pattern[str], _Builder]] = [
    (re.compile(r"^/model\s+(.+)$"), lambda m, _: Command(CommandKind.MODEL, text=m.group(1).strip())),
    (re.compile(r"^/provider\s+(.+)$"), lambda m, _: Command(CommandKind.PROVIDER, text=m.group(1).strip())),
    (
        re.compile(r"^/undo(?:\s+(\S+))?$"),
        lambda m, _: Command(CommandKind.UNDO, number=None if m.group(1) is None else _int_or(m.group(1), 1)),
    ),
    (re.compile(r"^/goto\s+(\d+)$"), lambda m, _: Command(CommandKind.GOTO, number=int(m.group(1)))),
    (re.compile(r"^/block\s+(\d+)$"), lambda m, _: Command(CommandKind.BLOCK, number=int(m.group(1)))),
    (re.compile(r"^/search\s+(.+)$"), lambda m, _: Command(CommandKind.SEARCH, text=m.group(1).strip())),
    (
        re.compile(r"^/temp\s+(\S+)$"),
        lambda m, default_temp: Command(CommandKind.TEMPERATURE, value=_float_or(m.group(1), default_temp)),
    ),
    (
        re.compile(r"^/max-tokens\s+(\S+)$"),
        lambda m, _: Command(CommandKind.MAX_TOKENS, number=_int_or(m.group(1), DEFAULT_MAX_TOKENS)),
    ),
    (
        re.compile(r"^/thinking-budget\s+(\S+)$"),
        lambda m, _: Command(CommandKind.THINKING_BUDGET, number=_int_or(m.group(1), DEFAULT_THINKING_BUDGET)),
    ),
    (
        re.compile(r"^/thinking\s+(on|off|true|false)$", re.IGNORECASE),
        lambda m, _: Command(CommandKind.THINKING, flag=m.group(1).lower() in {"on", "true"}),
    ),
    (re.compile(r"^/system\s+(.+)$", re.DOTALL), lambda m, _: Command(CommandKind.SYSTEM, text=m.group(1).strip())),
    (re.compile(r"^/export\s+(\w+)$"), lambda m, _: Command(CommandKind.EXPORT, text=m.group(1).lower())),
    (
        re.compile(r"^/chat\s+save\s+(.+)$"),
        lambda m, _: Command(CommandKind.CHAT_SAVE, text=unquote_name(m.group(1))),
    ),
    (
        re.compile(r"^/chat\s+load\s+(.+)$"),
        lambda m, _: Command(CommandKind.CHAT_LOAD, ref=parse_session_ref(m.group(1))),
    ),
    (
        re.compile(r"^/chat\s+delete(?:\s+(.+))?$"),
        lambda m, _: Command(CommandKind.CHAT_DELETE, ref=_optional_ref(m.group(1))),
    ),
    (
        re.compile(r"^/chat\s+continue(?:\s+(.+))?$"),
        lambda m, _: Command(CommandKind.CHAT_CONTINUE, ref=_optional_ref(m.group(1))),
    ),
    (
        re.compile(r"^/chat\s+fork(?:\s+(.+))?$"),
        lambda m, _: Command(CommandKind.CHAT_FORK, text=unquote_name(m.group(1) or "") or None),
    ),
    (
        re.compile(r"^/chat\s+merge\s+(.+)$"),
        lambda m, _: Command(CommandKind.CHAT_MERGE, ref=parse_session_ref(m.group(1))),
    ),
    (
        re.compile(rf"^/chat\s+branch\s+{_LEADING_NAME}(?:\s+(.+))?$"),
        lambda m, _: Command(
            CommandKind.CHAT_BRANCH,
            text=unquote_name(m.group(2) or "") or None,
            ref=parse_session_ref(m.group(1)),
        ),
    ),
    (
        re.compile(rf"^/chat\s+rename\s+{_LEADING_NAME}(?:\s+(.+))?$"),
        lambda m, _: Command(CommandKind.CHAT_RENAME, text=unquote_name(m.group(1)), ref=_optional_ref(m.group(2))),
    ),
    (
        re.compile(r"^/chat\s+name\s+(.+)$"),
        lambda m, _: Command(CommandKind.CHAT_NAME, text=unquote_name(m.group(1))),
    ),
]


def classify(raw: str, *, default_temperature: float = DEFAULT_TEMPERATURE) -> Command | None:
    """
    Classify one line of input.

    Returns `None` for plain chat text and for unrecognized `/...` input; callers tell the two
    apart with `is_command_shaped`. Never raises.
    """

    text = raw.strip()
    if not text.startswith(COMMAND_SIGIL):
        return None
    literal = _LITERALS.get(text)
    if literal is not None:
        return literal
    for pattern, build in _PATTERNS:
        m = pattern.match(text)
        if m is not None:
            return build(m, default_temperature)
    return None


def is_command_shaped(raw: str) -> bool:
    return raw.strip().startswith(COMMAND_SIGIL)


COMMAND_HELP: list[tuple[str, str]] = [
    ("/model <name>", "Switch model"),
    ("/models", "List models of the configured providers"),
    ("/provider <name>", "Switch provider"),
    ("/providers", "List configured providers"),
    ("/status", "Show model, provider and sampling settings"),
    ("/stats", "Show session statistics"),
    ("/temp <value>", "Set temperature"),
    ("/max-tokens <n>", "Set the response token limit"),
    ("/system [text]", "Set or clear the system prompt"),
    ("/thinking [on|off]", "Toggle or set extended thinking"),
    ("/thinking-budget <n>", "Set the thinking token budget"),
    ("/history", "Show the conversation"),
    ("/undo [n]", "Remove the last n messages (default 1)"),
    ("/goto <n>", "Keep messages 1..n"),
    ("/retry", "Resend the last message"),
    ("/search <term>", "Search all sessions"),
    ("/blocks", "List code blocks"),
    ("/block <n>", "Show code block n"),
    ("/export <markdown|json|txt>", "Export the conversation"),
    ("/chat new", "Start a new session"),
    ("/chat save <name>", "Save the session under a name"),
    ("/chat load <name|#n>", "Load a saved session"),
    ("/chat list", "List saved sessions"),
    ("/chat recent", "List recently updated sessions"),
    ("/chat delete [name|#n]", "Delete a saved session (default: current)"),
    ("/chat continue [name|#n]", "Resume a saved session (default: most recent)"),
    ("/chat fork [name]", "Copy the session into a new one"),
    ("/chat branch <name|#n> [new]", "Copy a saved session into a new one"),
    ("/chat merge <name|#n>", "Append another session's messages"),
    ("/chat rename <new> [name|#n]", "Rename a saved session"),
    ("/chat name <name>", "Name the current session"),
    ("/input-history", "Show recent prompt input"),
    ("/input-history clear", "Forget prompt input history"),
    ("/input-history stats", "Show prompt input history statistics"),
    ("/clear", "Clear the screen"),
    ("/help", "Show this help"),
    ("/quit", "Exit"),
]
