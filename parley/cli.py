from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Any

from . import __version__
from .runtime.cancellation import GlobalCancellation
from .runtime.commands import COMMAND_HELP
from .runtime.config import AppConfig, ConfigError, load_app_config
from .runtime.dispatch import Dispatcher, InputReader, InputSignal, sigint_handler
from .runtime.event_bus import EventBus
from .runtime.ids import format_ts_ms
from .runtime.input_history import InputHistory
from .runtime.llm.providers import build_registry
from .runtime.llm.providers.base import ProviderRegistry
from .runtime.orchestrator import Orchestrator
from .runtime.project import RuntimePaths
from .runtime.protocol import Event, EventKind
from .runtime.session import Session
from .runtime.stores import FileSessionStore, SessionStoreError
from .ui.console_ui import ConsoleUI, UIEvent, UIEventKind

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 5
EXIT_INTERRUPTED = 130

PROMPT = "You> "

_SLASH_COMMANDS = sorted({usage.split(" <")[0].split(" [")[0] for usage, _ in COMMAND_HELP})


def _configure_text_io() -> None:
    """
    Best-effort I/O normalization for interactive terminals.

    The default `errors='surrogateescape'` on stdin lets invalid byte sequences from a terminal or
    clipboard survive as surrogate codepoints, which later fail to encode when the session is
    written out. Decode with `errors='replace'` instead.
    """

    try:
        if hasattr(sys.stdin, "reconfigure"):
            sys.stdin.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="backslashreplace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="backslashreplace")
    except (AttributeError, OSError, ValueError):
        return


def _sanitize_text(text: str) -> str:
    # Replace illegal Unicode surrogate codepoints (U+D800..U+DFFF) with U+FFFD.
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


def _add_common_arguments(parser: argparse.ArgumentParser, *, default: Any = None) -> None:
    parser.add_argument("--state-dir", dest="state_dir", default=default, help="State directory (default: ~/.parley).")
    parser.add_argument("--openai-key", dest="openai_key", default=default, help="OpenAI API key.")
    parser.add_argument("--anthropic-key", dest="anthropic_key", default=default, help="Anthropic API key.")
    parser.add_argument("--gemini-key", dest="gemini_key", default=default, help="Gemini API key.")
    parser.add_argument(
        "--debug",
        action="store_true",
        default=default or False,
        help="Write debug logs to <state-dir>/parley.log.",
    )


def _add_chat_arguments(parser: argparse.ArgumentParser, *, default: Any = None) -> None:
    parser.add_argument("-m", "--model", default=default, help="Model to start with.")
    parser.add_argument("-t", "--temperature", type=float, default=default, help="Sampling temperature (0.0-2.0).")
    parser.add_argument("--max-tokens", dest="max_tokens", type=int, default=default, help="Response token limit.")
    parser.add_argument(
        "--thinking-budget",
        dest="thinking_budget",
        type=int,
        default=default,
        help="Token budget for extended thinking.",
    )
    parser.add_argument("--timeout", dest="timeout_s", type=float, default=default, help="Request timeout in seconds.")
    parser.add_argument("--system", dest="system_prompt", default=default, help="System prompt for new sessions.")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--load-session", dest="load_session", default=default, help="Start in a saved session.")
    group.add_argument(
        "--new-session",
        dest="new_session",
        action="store_true",
        default=default or False,
        help="Start a fresh session.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="parley",
        description="Interactive chat shell for OpenAI, Anthropic and Gemini models.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    _add_common_arguments(parser)
    _add_chat_arguments(parser)
    parser.set_defaults(func=_cmd_chat)

    subparsers = parser.add_subparsers(dest="command")

    chat_parser = subparsers.add_parser("chat", help="Start an interactive session (default).")
    _add_common_arguments(chat_parser, default=argparse.SUPPRESS)
    _add_chat_arguments(chat_parser, default=argparse.SUPPRESS)
    chat_parser.set_defaults(func=_cmd_chat)

    sessions_parser = subparsers.add_parser("sessions", help="List saved sessions.")
    _add_common_arguments(sessions_parser, default=argparse.SUPPRESS)
    sessions_parser.set_defaults(func=_cmd_sessions)

    models_parser = subparsers.add_parser("models", help="List models of the configured providers.")
    _add_common_arguments(models_parser, default=argparse.SUPPRESS)
    models_parser.set_defaults(func=_cmd_models)

    return parser


def _configure_logging(paths: RuntimePaths, *, debug: bool) -> None:
    level_name = "DEBUG" if debug else str(os.environ.get("PARLEY_LOG_LEVEL") or "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)
    paths.state_dir.mkdir(parents=True, exist_ok=True)
    # The terminal belongs to the conversation; logs only go to the file.
    logging.basicConfig(
        filename=str(paths.log_path),
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(args: argparse.Namespace, paths: RuntimePaths) -> AppConfig:
    overrides: dict[str, Any] = {
        "openai_key": args.openai_key,
        "anthropic_key": args.anthropic_key,
        "gemini_key": args.gemini_key,
    }
    for key in ("model", "temperature", "max_tokens", "thinking_budget", "timeout_s", "system_prompt"):
        overrides[key] = getattr(args, key, None)
    return load_app_config(config_path=paths.config_path, env_path=paths.env_path, overrides=overrides)


def _prepare(args: argparse.Namespace) -> tuple[RuntimePaths, AppConfig] | int:
    paths = RuntimePaths.discover(args.state_dir)
    _configure_logging(paths, debug=bool(args.debug))
    try:
        config = _load_config(args, paths)
        config.default_model()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    paths.ensure()
    return paths, config


def _initial_session(args: argparse.Namespace, config: AppConfig, store: FileSessionStore) -> Session:
    load_name = getattr(args, "load_session", None)
    if load_name:
        loaded = store.get(load_name)
        if loaded is None:
            raise ConfigError(f"Saved session not found: {load_name}")
        loaded.name = load_name
        return loaded
    if not getattr(args, "new_session", False):
        current = store.get_current()
        if current is not None:
            if getattr(args, "model", None):
                current.model = config.default_model()
                current.provider = None
            return current
    session = Session.create(config.default_model(), config.temperature)
    session.max_tokens = config.max_tokens
    session.thinking_budget = config.thinking_budget
    session.system_prompt = config.system_prompt
    return session


def _runtime_event_to_ui_events(event: Event) -> list[UIEvent]:
    kind = event.kind
    p = event.payload
    if kind == EventKind.LLM_REQUEST_STARTED.value:
        return [UIEvent(UIEventKind.LLM_REQUEST_STARTED, {"model": p.get("model")})]
    if kind == EventKind.LLM_THINKING_DELTA.value:
        return [UIEvent(UIEventKind.THINKING_DELTA, {"text": p.get("text", "")})]
    if kind == EventKind.LLM_RESPONSE_DELTA.value:
        return [UIEvent(UIEventKind.ASSISTANT_DELTA, {"text": p.get("text", "")})]
    if kind == EventKind.LLM_RESPONSE_COMPLETED.value:
        return [UIEvent(UIEventKind.ASSISTANT_COMPLETED, {})]
    if kind == EventKind.LLM_ATTEMPT_FAILED.value:
        return [UIEvent(UIEventKind.WARNING, {"message": f"attempt {p.get('attempts')} failed: {p.get('error')}"})]
    if kind == EventKind.LLM_RETRY_SCHEDULED.value:
        message = f"retrying in {p.get('delay_s'):g}s (attempt {p.get('attempt')}/{p.get('max_attempts')})"
        return [UIEvent(UIEventKind.WARNING, {"message": message})]
    if kind == EventKind.LLM_REQUEST_FAILED.value:
        message = f"{p.get('error')} (press Enter to resend, or edit the message)"
        return [UIEvent(UIEventKind.ERROR_RAISED, {"message": message, "code": p.get("error_code")})]
    if kind == EventKind.OPERATION_CANCELLED.value:
        return [UIEvent(UIEventKind.CANCELLED, {"message": p.get("message")})]
    if kind == EventKind.OPERATION_FAILED.value:
        return [UIEvent(UIEventKind.ERROR_RAISED, {"message": p.get("error"), "code": p.get("error_code")})]
    if kind == EventKind.SESSION_PERSIST_FAILED.value:
        return [UIEvent(UIEventKind.WARNING, {"message": f"session not saved: {p.get('error')}"})]
    if kind == EventKind.NOTICE.value:
        return [UIEvent(UIEventKind.NOTICE, {"message": p.get("message"), "lines": p.get("lines")})]
    if kind == EventKind.CLEAR_SCREEN.value:
        return [UIEvent(UIEventKind.CLEAR_SCREEN, {})]
    if kind == EventKind.EXIT_REQUESTED.value:
        return [UIEvent(UIEventKind.EXIT_REQUESTED, {})]
    return []


def _is_tty() -> bool:
    try:
        return bool(sys.stdin.isatty() and sys.stdout.isatty())
    except (AttributeError, ValueError):
        return False


def _should_use_prompt_toolkit() -> bool:
    if str(os.environ.get("PARLEY_PLAIN_INPUT") or "").strip() in {"1", "true", "yes", "on"}:
        return False
    return _is_tty()


def _make_prompt_toolkit_reader(history: InputHistory) -> InputReader:
    from prompt_toolkit import PromptSession
    from prompt_toolkit.completion import Completer, Completion
    from prompt_toolkit.key_binding import KeyBindings
    from prompt_toolkit.keys import Keys

    class _SlashCompleter(Completer):
        def get_completions(self, document, complete_event):
            text = document.text_before_cursor
            if not text.startswith("/"):
                return
            for c in _SLASH_COMMANDS:
                if c.startswith(text):
                    yield Completion(c, start_position=-len(text))

    kb = KeyBindings()

    @kb.add(Keys.ControlJ)
    def _(event) -> None:
        event.current_buffer.insert_text("\n")

    @kb.add(Keys.Enter)
    def _(event) -> None:
        event.current_buffer.validate_and_handle()

    session: PromptSession[str] = PromptSession(
        message=PROMPT,
        multiline=True,
        key_bindings=kb,
        completer=_SlashCompleter(),
        history=history,
    )

    async def _read(prefill: str) -> str | InputSignal:
        try:
            text = await session.prompt_async(default=prefill)
        except KeyboardInterrupt:
            return InputSignal.INTERRUPT
        except EOFError:
            return InputSignal.EOF
        return _sanitize_text(text)

    return _read


def _make_plain_reader(history: InputHistory | None = None) -> InputReader:
    """
    Line reader for pipes and terminals without prompt_toolkit.

    `input()` waits on a worker thread while SIGINT is routed to the loop. Ctrl-C returns
    `InputSignal.INTERRUPT` and leaves that read pending; the next call continues it.
    """

    pending: asyncio.Task[str] | None = None

    async def _read(prefill: str) -> str | InputSignal:
        nonlocal pending
        if prefill:
            print(f"(previous message: {prefill})")
        print(PROMPT, end="", flush=True)
        if pending is None:
            pending = asyncio.ensure_future(asyncio.to_thread(input))
        interrupted = asyncio.get_running_loop().create_future()

        def _on_sigint() -> None:
            if not interrupted.done():
                interrupted.set_result(None)

        with sigint_handler(_on_sigint):
            await asyncio.wait({pending, interrupted}, return_when=asyncio.FIRST_COMPLETED)
        if not pending.done():
            print()
            return InputSignal.INTERRUPT

        line, pending = pending, None
        try:
            text = line.result()
        except EOFError:
            return InputSignal.EOF
        # Plain input cannot pre-fill; an empty line resends the leftover text.
        if not text.strip() and prefill:
            text = prefill
        text = _sanitize_text(text)
        if history is not None:
            history.append_string(text)
        return text

    return _read


async def _run_chat(args: argparse.Namespace, paths: RuntimePaths, config: AppConfig) -> int:
    store = FileSessionStore(paths.sessions_dir)
    try:
        session = _initial_session(args, config, store)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    registry = build_registry(config.api_keys, timeout_s=config.timeout_s)
    event_bus = EventBus()
    history = InputHistory(paths.history_path)
    ui = ConsoleUI(stream=sys.stdout, enable_color=_is_tty())

    def _on_runtime_event(event: Event) -> None:
        for uiev in _runtime_event_to_ui_events(event):
            ui.emit(uiev)

    event_bus.subscribe(_on_runtime_event)

    orchestrator = Orchestrator(providers=registry, event_bus=event_bus, global_cancel=GlobalCancellation())
    dispatcher = Dispatcher(
        session=session,
        store=store,
        orchestrator=orchestrator,
        event_bus=event_bus,
        config=config,
        exports_dir=paths.exports_dir,
        input_history=history,
    )
    if _should_use_prompt_toolkit():
        read_input = _make_prompt_toolkit_reader(history)
    else:
        read_input = _make_plain_reader(history)
    ui.print_header(session_label=session.name or "(new)", model=session.model)
    logger.info("chat started: session=%s model=%s providers=%s", session.session_id, session.model, registry.names())
    try:
        await dispatcher.run(read_input)
    finally:
        await registry.aclose()
    return EXIT_OK


def _cmd_chat(args: argparse.Namespace) -> int:
    prepared = _prepare(args)
    if isinstance(prepared, int):
        return prepared
    paths, config = prepared
    return asyncio.run(_run_chat(args, paths, config))


def _cmd_sessions(args: argparse.Namespace) -> int:
    paths = RuntimePaths.discover(args.state_dir)
    paths.ensure()
    try:
        store = FileSessionStore(paths.sessions_dir)
    except (OSError, SessionStoreError) as e:
        print(f"Failed to open session store: {e}", file=sys.stderr)
        return EXIT_ERROR
    summaries = store.recent(limit=len(store.names()) or 1)
    if not summaries:
        print("No saved sessions.")
        return EXIT_OK
    for i, s in enumerate(summaries, start=1):
        print(f"#{i} {s.name}  {s.turn_count} messages  {s.model}  updated {format_ts_ms(s.updated_at)}")
    return EXIT_OK


def _cmd_models(args: argparse.Namespace) -> int:
    prepared = _prepare(args)
    if isinstance(prepared, int):
        return prepared
    _, config = prepared
    registry: ProviderRegistry = build_registry(config.api_keys, timeout_s=config.timeout_s)
    try:
        for name in registry.names():
            print(f"{name}:")
            for model in registry.get(name).list_models():
                print(f"  {model}")
    finally:
        asyncio.run(registry.aclose())
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    _configure_text_io()
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        func = getattr(args, "func")
        return int(func(args))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    raise SystemExit(main())
