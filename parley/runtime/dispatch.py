from __future__ import annotations

import asyncio
import logging
import platform
import signal
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum, StrEnum
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator

from .cancellation import GlobalCancellation
from .commands import COMMAND_HELP, Command, CommandKind, SessionRef, SessionRefKind, classify, is_command_shaped
from .config import AppConfig
from .error_codes import ErrorCode
from .event_bus import EventBus
from .export import export_session, parse_export_format
from .ids import format_ts_ms
from .input_history import InputHistory
from .llm.providers.anthropic import supports_thinking
from .llm.types import ChatRole
from .orchestrator import Orchestrator, SendOutcome, SendStatus
from .protocol import EventKind
from .search import search_sessions
from .session import Session, SessionRangeError
from .stores import SessionStore, SessionStoreError, SessionSummary

logger = logging.getLogger(__name__)

_IS_WINDOWS = platform.system() == "Windows"

RECENT_LIMIT = 10
INPUT_HISTORY_SHOWN = 20


class InputSignal(Enum):
    INTERRUPT = "interrupt"
    EOF = "eof"


InputReader = Callable[[str], Awaitable["str | InputSignal"]]


class PrefillKind(StrEnum):
    INTERRUPTED = "interrupted"
    RETRY_PENDING = "retry_pending"


@dataclass(slots=True)
class PendingPrefill:
    """At most one leftover text, offered as the default for the next input."""

    kind: PrefillKind | None = None
    text: str | None = None

    def set_interrupted(self, text: str) -> None:
        self.kind = PrefillKind.INTERRUPTED
        self.text = text

    def set_retry_pending(self, text: str) -> None:
        self.kind = PrefillKind.RETRY_PENDING
        self.text = text

    def clear(self) -> None:
        self.kind = None
        self.text = None

    def take(self) -> str | None:
        text = self.text
        self.clear()
        return text


class CommandError(Exception):
    def __init__(self, message: str, *, code: ErrorCode) -> None:
        super().__init__(message)
        self.code = code


def _checked_name(name: str | None) -> str:
    if not name:
        raise CommandError("Session name cannot be empty.", code=ErrorCode.SESSION_REFERENCE)
    if name.startswith("#"):
        raise CommandError("Session names cannot start with '#'", code=ErrorCode.SESSION_REFERENCE)
    return name


def _add_signal_handler(loop: asyncio.AbstractEventLoop, sig: int, callback: Any) -> bool:
    """Add a signal handler, returning False on Windows where it's unsupported."""
    if _IS_WINDOWS:
        return False
    try:
        loop.add_signal_handler(sig, callback)
        return True
    except (NotImplementedError, RuntimeError):
        return False


def _remove_signal_handler(loop: asyncio.AbstractEventLoop, sig: int) -> None:
    if _IS_WINDOWS:
        return
    try:
        loop.remove_signal_handler(sig)
    except (NotImplementedError, RuntimeError):
        pass


@contextmanager
def sigint_handler(callback: Callable[[], None]) -> Iterator[bool]:
    """
    Route SIGINT to `callback` on the running loop for the duration of the block.

    Yields whether the handler could be installed. On exit the handler that was in place before
    (for example the one `asyncio.run` installs) is put back.
    """

    loop = asyncio.get_running_loop()
    previous = signal.getsignal(signal.SIGINT)
    installed = _add_signal_handler(loop, signal.SIGINT, callback)
    try:
        yield installed
    finally:
        if installed:
            _remove_signal_handler(loop, signal.SIGINT)
            if previous is not None:
                signal.signal(signal.SIGINT, previous)


class Dispatcher:
    """
    The input loop: one line in, one command or one send, then persist.

    Holds the live session and the pending pre-fill. Command handlers mutate the session
    synchronously; chat text goes to the orchestrator. Output is published as events.
    """

    def __init__(
        self,
        *,
        session: Session,
        store: SessionStore,
        orchestrator: Orchestrator,
        event_bus: EventBus,
        config: AppConfig,
        exports_dir: Path,
        input_history: InputHistory | None = None,
        handle_sigint: bool = True,
    ) -> None:
        self.session = session
        self.store = store
        self.orchestrator = orchestrator
        self.event_bus = event_bus
        self.config = config
        self.exports_dir = exports_dir
        self.input_history = input_history
        self.prefill = PendingPrefill()
        self._handle_sigint = handle_sigint
        self._listing: list[str] = []
        self._handlers: dict[CommandKind, Callable[[Command], bool | None]] = {
            CommandKind.LIST_MODELS: self._cmd_list_models,
            CommandKind.LIST_PROVIDERS: self._cmd_list_providers,
            CommandKind.STATUS: self._cmd_status,
            CommandKind.STATS: self._cmd_stats,
            CommandKind.HELP: self._cmd_help,
            CommandKind.CLEAR: self._cmd_clear,
            CommandKind.QUIT: self._cmd_quit,
            CommandKind.MODEL: self._cmd_model,
            CommandKind.PROVIDER: self._cmd_provider,
            CommandKind.TEMPERATURE: self._cmd_temperature,
            CommandKind.MAX_TOKENS: self._cmd_max_tokens,
            CommandKind.SYSTEM: self._cmd_system,
            CommandKind.THINKING: self._cmd_thinking,
            CommandKind.THINKING_TOGGLE: self._cmd_thinking,
            CommandKind.THINKING_BUDGET: self._cmd_thinking_budget,
            CommandKind.HISTORY: self._cmd_history,
            CommandKind.UNDO: self._cmd_undo,
            CommandKind.GOTO: self._cmd_goto,
            CommandKind.SEARCH: self._cmd_search,
            CommandKind.BLOCKS: self._cmd_blocks,
            CommandKind.BLOCK: self._cmd_block,
            CommandKind.EXPORT: self._cmd_export,
            CommandKind.CHAT_NEW: self._cmd_chat_new,
            CommandKind.CHAT_LIST: self._cmd_chat_list,
            CommandKind.CHAT_RECENT: self._cmd_chat_recent,
            CommandKind.CHAT_SAVE: self._cmd_chat_save,
            CommandKind.CHAT_LOAD: self._cmd_chat_load,
            CommandKind.CHAT_DELETE: self._cmd_chat_delete,
            CommandKind.CHAT_CONTINUE: self._cmd_chat_continue,
            CommandKind.CHAT_FORK: self._cmd_chat_fork,
            CommandKind.CHAT_BRANCH: self._cmd_chat_branch,
            CommandKind.CHAT_MERGE: self._cmd_chat_merge,
            CommandKind.CHAT_RENAME: self._cmd_chat_rename,
            CommandKind.CHAT_NAME: self._cmd_chat_name,
            CommandKind.INPUT_HISTORY: self._cmd_input_history,
            CommandKind.INPUT_HISTORY_CLEAR: self._cmd_input_history_clear,
            CommandKind.INPUT_HISTORY_STATS: self._cmd_input_history_stats,
        }

    @property
    def global_cancel(self) -> GlobalCancellation:
        return self.orchestrator.global_cancel

    # --- loop ---
    async def run(self, read_input: InputReader) -> None:
        while True:
            raw = await read_input(self.prefill.text or "")
            keep_going = await self.handle_input(raw)
            self.persist()
            if not keep_going:
                return

    async def handle_input(self, raw: str | InputSignal) -> bool:
        """Process one input. Returns False when the loop should stop."""

        # A global interrupt that fired while idle has nothing left to abort.
        self.global_cancel.consume()
        pending = self.prefill.take()

        if raw is InputSignal.INTERRUPT:
            self.orchestrator.interrupt()
            return True
        if raw is InputSignal.EOF:
            return self._cmd_quit(Command(CommandKind.QUIT))

        text = raw.strip()
        if not text:
            return True

        command = classify(text, default_temperature=self.config.temperature)
        if command is None and is_command_shaped(text):
            self._error(f"Unknown command: {text.split()[0]} (type /help)", ErrorCode.INVALID_COMMAND)
            return True
        if command is None:
            await self.send(text)
            return True
        if command.kind is CommandKind.RETRY:
            await self._retry(pending)
            return True

        handler = self._handlers[command.kind]
        try:
            result = handler(command)
        except CommandError as e:
            self._error(str(e), e.code)
            return True
        except SessionRangeError as e:
            self._error(str(e), ErrorCode.SESSION_RANGE)
            return True
        return result is not False

    async def send(self, text: str) -> SendOutcome:
        with self._sigint_fires_global():
            outcome = await self.orchestrator.send(self.session, text)
        if outcome.status is SendStatus.CANCELLED:
            self.prefill.set_interrupted(text)
        elif outcome.status is SendStatus.EXHAUSTED:
            self.prefill.set_retry_pending(text)
        return outcome

    def persist(self) -> None:
        session = self.session
        try:
            if session.name is not None:
                self.store.put(session.name, session)
            self.store.set_current(session)
            self.store.persist()
        except SessionStoreError as e:
            logger.warning("session persistence failed: %s", e)
            self._emit(
                EventKind.SESSION_PERSIST_FAILED,
                {"error": str(e), "error_code": ErrorCode.PERSISTENCE_FAILED.value},
            )
            return
        self._emit(EventKind.SESSION_PERSISTED, {"name": session.name, "turns": len(session.turns)})

    @contextmanager
    def _sigint_fires_global(self) -> Iterator[None]:
        if not self._handle_sigint:
            yield
            return
        with sigint_handler(self.global_cancel.fire):
            yield

    async def _retry(self, pending: str | None) -> None:
        if pending:
            await self.send(pending)
            return
        last = self.session.last_user_turn()
        if last is None:
            self._error("Nothing to retry.", ErrorCode.SESSION_RANGE)
            return
        self.session.undo(len(self.session.turns) - last.number + 1)
        await self.send(last.content)

    # --- output ---
    def _emit(self, kind: EventKind, payload: dict[str, Any]) -> None:
        self.event_bus.emit(kind, payload, session_id=self.session.session_id)

    def _notice(self, message: str, lines: list[str] | None = None) -> None:
        payload: dict[str, Any] = {"message": message}
        if lines:
            payload["lines"] = lines
        self._emit(EventKind.NOTICE, payload)

    def _error(self, message: str, code: ErrorCode) -> None:
        self._emit(EventKind.OPERATION_FAILED, {"error": message, "error_code": code.value})

    # --- settings ---
    def _cmd_list_models(self, _: Command) -> None:
        lines: list[str] = []
        for name in self.orchestrator.providers.names():
            lines.append(f"{name}:")
            for model in self.orchestrator.providers.get(name).list_models():
                marker = "*" if model == self.session.model else " "
                lines.append(f"  {marker} {model}")
        self._notice("Available models:", lines)

    def _cmd_list_providers(self, _: Command) -> None:
        current = self._current_provider_name()
        lines = [f"{'*' if name == current else ' '} {name}" for name in self.orchestrator.providers.names()]
        self._notice("Configured providers:", lines)

    def _cmd_status(self, _: Command) -> None:
        s = self.session
        thinking = f"on (budget {s.thinking_budget})" if s.thinking_enabled else "off"
        lines = [
            f"Session:     {s.name or '(unsaved)'} [{s.session_id}]",
            f"Provider:    {self._current_provider_name() or '(none)'}",
            f"Model:       {s.model}",
            f"Temperature: {s.temperature}",
            f"Max tokens:  {s.max_tokens}",
            f"Thinking:    {thinking}",
            f"System:      {'set' if s.system_prompt else 'none'}",
            f"Messages:    {len(s.turns)}",
        ]
        self._notice("Status:", lines)

    def _cmd_stats(self, _: Command) -> None:
        s = self.session
        user = [t for t in s.turns if t.role is ChatRole.USER]
        assistant = [t for t in s.turns if t.role is ChatRole.ASSISTANT]
        models = sorted({t.model for t in assistant if t.model})
        lines = [
            f"Messages:    {len(s.turns)} ({len(user)} user, {len(assistant)} assistant)",
            f"Characters:  {sum(len(t.content) for t in s.turns)}",
            f"Words:       {sum(len(t.content.split()) for t in s.turns)}",
            f"Code blocks: {len(s.code_blocks())}",
            f"Models used: {', '.join(models) if models else '-'}",
            f"Created:     {format_ts_ms(s.created_at)}",
            f"Updated:     {format_ts_ms(s.updated_at)}",
        ]
        self._notice("Session statistics:", lines)

    def _cmd_help(self, _: Command) -> None:
        width = max(len(usage) for usage, _ in COMMAND_HELP)
        self._notice("Commands:", [f"{usage.ljust(width)}  {desc}" for usage, desc in COMMAND_HELP])

    def _cmd_clear(self, _: Command) -> None:
        self._emit(EventKind.CLEAR_SCREEN, {})

    def _cmd_quit(self, _: Command) -> bool:
        self._auto_save_current()
        self._emit(EventKind.EXIT_REQUESTED, {})
        return False

    def _cmd_model(self, command: Command) -> None:
        model = command.text or ""
        name = self.orchestrator.providers.name_for_model(model)
        if name is None:
            raise CommandError(
                f"Unknown or unavailable model: {model} (see /models)", code=ErrorCode.PROVIDER_UNAVAILABLE
            )
        self.session.model = model
        self.session.provider = name
        self.session.touch()
        self._notice(f"Switched to model {model} ({name})")

    def _cmd_provider(self, command: Command) -> None:
        name = (command.text or "").lower()
        providers = self.orchestrator.providers
        if not providers.has(name):
            raise CommandError(
                f"Provider not configured: {name} (configured: {', '.join(providers.names()) or 'none'})",
                code=ErrorCode.PROVIDER_UNAVAILABLE,
            )
        models = providers.get(name).list_models()
        self.session.provider = name
        if models and self.session.model not in models:
            self.session.model = models[0]
        self.session.touch()
        self._notice(f"Switched to provider {name} (model {self.session.model})")

    def _cmd_temperature(self, command: Command) -> None:
        value = command.value if command.value is not None else self.config.temperature
        if not 0.0 <= value <= 2.0:
            raise CommandError("Temperature must be between 0.0 and 2.0", code=ErrorCode.INVALID_COMMAND)
        self.session.temperature = value
        self.session.touch()
        self._notice(f"Temperature set to {value}")

    def _cmd_max_tokens(self, command: Command) -> None:
        value = command.number or 0
        if value < 1:
            raise CommandError("Max tokens must be at least 1", code=ErrorCode.INVALID_COMMAND)
        self.session.max_tokens = value
        self.session.touch()
        self._notice(f"Max tokens set to {value}")

    def _cmd_system(self, command: Command) -> None:
        text = command.text or ""
        self.session.system_prompt = text or None
        self.session.touch()
        self._notice("System prompt set" if text else "System prompt cleared")

    def _cmd_thinking(self, command: Command) -> None:
        if command.kind is CommandKind.THINKING_TOGGLE:
            enabled = not self.session.thinking_enabled
        else:
            enabled = bool(command.flag)
        self.session.thinking_enabled = enabled
        self.session.touch()
        self._notice(f"Thinking {'enabled' if enabled else 'disabled'}")
        provider = self._current_provider_name()
        if enabled and provider == "anthropic" and not supports_thinking(self.session.model):
            self._notice(f"Note: {self.session.model} does not support extended thinking; it will be ignored.")

    def _cmd_thinking_budget(self, command: Command) -> None:
        value = command.number or 0
        if value < 1:
            raise CommandError("Thinking budget must be at least 1", code=ErrorCode.INVALID_COMMAND)
        self.session.thinking_budget = value
        self.session.touch()
        self._notice(f"Thinking budget set to {value}")

    # --- conversation ---
    def _cmd_history(self, _: Command) -> None:
        if not self.session.turns:
            self._notice("No messages yet.")
            return
        lines: list[str] = []
        for turn in self.session.turns:
            who = "You" if turn.role is ChatRole.USER else (turn.model or "Assistant")
            lines.append(f"[{turn.number}] {who}: {turn.content}")
        self._notice(f"History ({len(self.session.turns)} messages):", lines)

    def _cmd_undo(self, command: Command) -> None:
        count = command.number if command.number is not None else 1
        removed = self.session.undo(count)
        self._notice(f"Removed {len(removed)} message(s)")

    def _cmd_goto(self, command: Command) -> None:
        index = command.number if command.number is not None else 1
        removed = self.session.goto(index)
        self._notice(f"Kept messages 1-{index}, removed {len(removed)}")

    def _cmd_search(self, command: Command) -> None:
        term = command.text or ""
        saved = [(name, s) for name in self.store.names() if (s := self.store.get(name)) is not None]
        hits = search_sessions(term, current=self.session, saved=saved)
        if not hits:
            self._notice(f"No matches for '{term}'")
            return
        lines = [f"[{h.session_label} #{h.turn_number}] {h.role.value}: {h.excerpt}" for h in hits]
        self._notice(f"{len(hits)} match(es) for '{term}':", lines)

    def _cmd_blocks(self, _: Command) -> None:
        blocks = self.session.code_blocks()
        if not blocks:
            self._notice("No code blocks in this session.")
            return
        lines = []
        for b in blocks:
            first = b.code.splitlines()[0] if b.code else ""
            lines.append(f"{b.index}. [{b.language or 'text'}] (message {b.turn_number}) {first[:60]}")
        self._notice("Code blocks:", lines)

    def _cmd_block(self, command: Command) -> None:
        blocks = self.session.code_blocks()
        index = command.number or 0
        if index < 1 or index > len(blocks):
            raise CommandError(f"Invalid block number: {index} ({len(blocks)} available)", code=ErrorCode.SESSION_RANGE)
        block = blocks[index - 1]
        self._notice(f"Block {block.index} ({block.language or 'text'}):", block.code.splitlines())

    def _cmd_export(self, command: Command) -> None:
        try:
            fmt = parse_export_format(command.text or "")
        except ValueError as e:
            raise CommandError(str(e), code=ErrorCode.INVALID_COMMAND) from e
        try:
            path = export_session(self.session, fmt, self.exports_dir)
        except OSError as e:
            raise CommandError(f"Export failed: {e}", code=ErrorCode.PERSISTENCE_FAILED) from e
        self._notice(f"Exported to {path}")

    # --- sessions ---
    def _cmd_chat_new(self, _: Command) -> None:
        self._auto_save_current()
        old = self.session
        fresh = Session.create(old.model, old.temperature, provider=old.provider)
        fresh.max_tokens = old.max_tokens
        fresh.thinking_enabled = old.thinking_enabled
        fresh.thinking_budget = old.thinking_budget
        self._switch_to(fresh)
        self._notice("Started a new session")

    def _cmd_chat_list(self, _: Command) -> None:
        summaries = self.store.list()
        self._listing = [s.name for s in summaries]
        if not summaries:
            self._notice("No saved sessions.")
            return
        self._notice("Saved sessions:", self._render_listing(summaries))

    def _cmd_chat_recent(self, _: Command) -> None:
        summaries = self.store.recent(RECENT_LIMIT)
        self._listing = [s.name for s in summaries]
        if not summaries:
            self._notice("No saved sessions.")
            return
        self._notice("Recent sessions:", self._render_listing(summaries))

    def _cmd_chat_save(self, command: Command) -> None:
        name = _checked_name(command.text)
        self.session.name = name
        self.session.touch()
        self.store.put(name, self.session)
        self._notice(f"Saved session as '{name}'")

    def _cmd_chat_load(self, command: Command) -> None:
        name = self._resolve_ref(command.ref)
        self._load(name)

    def _cmd_chat_continue(self, command: Command) -> None:
        if command.ref is None:
            recent = self.store.most_recent()
            if recent is None:
                raise CommandError("No saved sessions to continue.", code=ErrorCode.SESSION_NOT_FOUND)
            name = recent.name
        else:
            name = self._resolve_ref(command.ref)
        self._load(name)

    def _cmd_chat_delete(self, command: Command) -> None:
        if command.ref is None:
            name = self.session.name
            if name is None:
                raise CommandError("The current session has not been saved.", code=ErrorCode.SESSION_NOT_FOUND)
        else:
            name = self._resolve_ref(command.ref)
        if not self.store.delete(name):
            raise CommandError(f"Session not found: {name}", code=ErrorCode.SESSION_NOT_FOUND)
        if self.session.name == name:
            self.session.name = None
            self.session.touch()
        self._listing = []
        self._notice(f"Deleted session '{name}'")

    def _cmd_chat_fork(self, command: Command) -> None:
        self._fork_into(self.session, command.text)

    def _cmd_chat_branch(self, command: Command) -> None:
        source_name = self._resolve_ref(command.ref)
        source = self.store.get(source_name)
        if source is None:
            raise CommandError(f"Session not found: {source_name}", code=ErrorCode.SESSION_NOT_FOUND)
        self._fork_into(source, command.text)

    def _cmd_chat_merge(self, command: Command) -> None:
        name = self._resolve_ref(command.ref)
        other = self.store.get(name)
        if other is None:
            raise CommandError(f"Session not found: {name}", code=ErrorCode.SESSION_NOT_FOUND)
        if other.session_id == self.session.session_id:
            raise CommandError("Cannot merge a session into itself.", code=ErrorCode.SESSION_REFERENCE)
        count = self.session.merge(other)
        self._notice(f"Merged {count} message(s) from '{name}'")

    def _cmd_chat_rename(self, command: Command) -> None:
        new_name = _checked_name(command.text)
        if command.ref is None:
            old_name = self.session.name
            if old_name is None:
                raise CommandError("The current session has not been saved.", code=ErrorCode.SESSION_NOT_FOUND)
        else:
            old_name = self._resolve_ref(command.ref)
        target = self.store.get(old_name)
        if target is None:
            raise CommandError(f"Session not found: {old_name}", code=ErrorCode.SESSION_NOT_FOUND)
        if self.store.get(new_name) is not None:
            raise CommandError(f"A session named '{new_name}' already exists", code=ErrorCode.SESSION_REFERENCE)
        target.name = new_name
        self.store.put(new_name, target)
        self.store.delete(old_name)
        if self.session.name == old_name:
            self.session.name = new_name
            self.session.touch()
        self._listing = []
        self._notice(f"Renamed '{old_name}' to '{new_name}'")

    def _cmd_chat_name(self, command: Command) -> None:
        name = _checked_name(command.text)
        self.session.name = name
        self.session.touch()
        self._notice(f"Session named '{name}'")

    # --- input history ---
    def _require_input_history(self) -> InputHistory:
        if self.input_history is None:
            raise CommandError("Input history is not available.", code=ErrorCode.INVALID_COMMAND)
        return self.input_history

    def _cmd_input_history(self, _: Command) -> None:
        entries = self._require_input_history().entries()
        if not entries:
            self._notice("Input history is empty.")
            return
        shown = entries[-INPUT_HISTORY_SHOWN:]
        first = len(entries) - len(shown) + 1
        lines = []
        for number, entry in enumerate(shown, start=first):
            head, _, rest = entry.partition("\n")
            lines.append(f"{number}. {head}{' …' if rest else ''}")
        self._notice(f"Input history (last {len(shown)} of {len(entries)}):", lines)

    def _cmd_input_history_clear(self, _: Command) -> None:
        dropped = self._require_input_history().clear()
        self._notice(f"Cleared {dropped} input history entr{'y' if dropped == 1 else 'ies'}")

    def _cmd_input_history_stats(self, _: Command) -> None:
        history = self._require_input_history()
        stats = history.stats()
        lines = [
            f"Entries:     {stats.entries}",
            f"Unique:      {stats.unique}",
            f"File:        {history.path}",
        ]
        if stats.most_used is not None:
            head = stats.most_used.partition("\n")[0]
            lines.append(f"Most used:   {head[:60]} ({stats.most_used_count}x)")
        self._notice("Input history statistics:", lines)

    # --- helpers ---
    def _fork_into(self, source: Session, name: str | None) -> None:
        if name is not None:
            name = _checked_name(name)
            if self.store.get(name) is not None:
                raise CommandError(f"A session named '{name}' already exists", code=ErrorCode.SESSION_REFERENCE)
        self._auto_save_current()
        forked = source.fork()
        if name is not None:
            forked.name = name
            self.store.put(name, forked)
        self._switch_to(forked)
        self._notice(f"Forked into {'session ' + repr(name) if name else 'a new session'}")

    def _current_provider_name(self) -> str | None:
        return self.session.provider or self.orchestrator.providers.name_for_model(self.session.model)

    def _render_listing(self, summaries: list[SessionSummary]) -> list[str]:
        lines = []
        for i, s in enumerate(summaries, start=1):
            marker = "*" if s.name == self.session.name else " "
            lines.append(
                f"{marker} #{i} {s.name} ({s.turn_count} messages, {s.model}, updated {format_ts_ms(s.updated_at)})"
            )
        return lines

    def _resolve_ref(self, ref: SessionRef | None) -> str:
        if ref is None:
            raise CommandError("A session name is required.", code=ErrorCode.SESSION_REFERENCE)
        if ref.kind is SessionRefKind.INVALID:
            raise CommandError(
                f"Invalid session reference: {ref.raw} (use #N after /chat list, or quote the name)",
                code=ErrorCode.SESSION_REFERENCE,
            )
        if ref.kind is SessionRefKind.INDEX:
            index = ref.index or 0
            if not self._listing:
                raise CommandError("Run /chat list or /chat recent before using #N.", code=ErrorCode.SESSION_REFERENCE)
            if index < 1 or index > len(self._listing):
                raise CommandError(
                    f"Invalid session number: #{index} (1-{len(self._listing)})", code=ErrorCode.SESSION_REFERENCE
                )
            return self._listing[index - 1]
        return ref.name or ""

    def _load(self, name: str) -> None:
        loaded = self.store.get(name)
        if loaded is None:
            raise CommandError(f"Session not found: {name}", code=ErrorCode.SESSION_NOT_FOUND)
        if loaded.session_id != self.session.session_id:
            self._auto_save_current()
        loaded.name = name
        self._switch_to(loaded)
        self._notice(f"Loaded session '{name}' ({len(loaded.turns)} messages, model {loaded.model})")

    def _switch_to(self, session: Session) -> None:
        self.session = session
        self._emit(EventKind.SESSION_CHANGED, {"name": session.name, "turns": len(session.turns)})

    def _auto_save_current(self) -> None:
        session = self.session
        if not session.should_auto_save():
            return
        base = session.auto_name()
        name = base
        suffix = 2
        while self.store.get(name) is not None:
            name = f"{base}_{suffix}"
            suffix += 1
        session.name = name
        self.store.put(name, session)
        self._notice(f"Auto-saved session as '{name}'")

