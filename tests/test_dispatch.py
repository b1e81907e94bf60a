from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path

import pytest
from conftest import CLAUDE, ScriptedProvider, server_error

from parley.runtime.config import AppConfig
from parley.runtime.dispatch import Dispatcher, InputSignal, PrefillKind, sigint_handler
from parley.runtime.error_codes import ErrorCode
from parley.runtime.input_history import InputHistory
from parley.runtime.llm.types import ChatRole, ProviderKind
from parley.runtime.protocol import EventKind
from parley.runtime.session import Session
from parley.runtime.stores import FileSessionStore, SessionStoreError


class FailingStore(FileSessionStore):
    def persist(self) -> None:
        raise SessionStoreError("disk full")


@pytest.fixture
def make_dispatcher(tmp_path: Path, make_orchestrator, event_bus):
    def _make(
        provider: ScriptedProvider,
        *,
        store_cls=FileSessionStore,
        session: Session | None = None,
        input_history: InputHistory | None = None,
    ) -> Dispatcher:
        return Dispatcher(
            session=session or Session.create(CLAUDE, 0.7),
            store=store_cls(tmp_path / "sessions"),
            orchestrator=make_orchestrator(provider),
            event_bus=event_bus,
            config=AppConfig(api_keys={ProviderKind.ANTHROPIC: "k"}),
            exports_dir=tmp_path / "exports",
            input_history=input_history,
            handle_sigint=False,
        )

    return _make


def _feed(dispatcher: Dispatcher, *inputs) -> list[bool]:
    async def scenario():
        return [await dispatcher.handle_input(raw) for raw in inputs]

    return asyncio.run(scenario())


def _errors(recorder) -> list[tuple[str, str]]:
    return [(e.payload["error_code"], e.payload["error"]) for e in recorder.of(EventKind.OPERATION_FAILED)]


def test_plain_text_is_sent(make_dispatcher) -> None:
    d = make_dispatcher(ScriptedProvider([["hi there"]]))
    assert _feed(d, "hello") == [True]
    assert [t.content for t in d.session.turns] == ["hello", "hi there"]
    assert d.prefill.kind is None


def test_unknown_command_is_rejected(make_dispatcher, recorder) -> None:
    provider = ScriptedProvider([])
    d = make_dispatcher(provider)
    assert _feed(d, "/frobnicate now") == [True]
    assert _errors(recorder)[0][0] == ErrorCode.INVALID_COMMAND.value
    assert d.session.turns == []
    assert provider.requests == []


def test_exhausted_send_sets_retry_prefill(make_dispatcher) -> None:
    d = make_dispatcher(ScriptedProvider([[server_error()], [server_error()], [server_error()]]))
    _feed(d, "hello")
    assert d.prefill.kind is PrefillKind.RETRY_PENDING
    assert d.prefill.text == "hello"
    assert d.session.turns == []

    # Any following input consumes the pre-fill, whatever it is.
    _feed(d, "/status")
    assert d.prefill.kind is None


def test_retry_resends_pending_text(make_dispatcher) -> None:
    d = make_dispatcher(ScriptedProvider([[server_error()], [server_error()], [server_error()], ["ok"]]))
    _feed(d, "hello", "/retry")
    assert [t.content for t in d.session.turns] == ["hello", "ok"]


def test_retry_without_pending_resends_last_user_turn(make_dispatcher) -> None:
    provider = ScriptedProvider([["first"], ["second"]])
    d = make_dispatcher(provider)
    _feed(d, "hello", "/retry")
    assert [t.content for t in d.session.turns] == ["hello", "second"]
    assert [m.content for m in provider.requests[1].conversation()] == ["hello"]


def test_retry_with_empty_log_reports_error(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    _feed(d, "/retry")
    assert _errors(recorder)[0][0] == ErrorCode.SESSION_RANGE.value


def test_interrupt_signal_at_prompt_clears_prefill(make_dispatcher) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    d.prefill.set_interrupted("draft")
    assert _feed(d, InputSignal.INTERRUPT) == [True]
    assert d.prefill.text is None


def test_eof_quits_and_auto_saves(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([["answer"]]))
    results = _feed(d, "question", InputSignal.EOF)
    assert results == [True, False]
    assert recorder.of(EventKind.EXIT_REQUESTED)
    assert d.session.name == d.session.auto_name()
    assert d.store.get(d.session.name) is not None


def test_quit_without_llm_interaction_does_not_auto_save(make_dispatcher) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    assert _feed(d, "/quit") == [False]
    assert d.store.names() == []


def test_undo_out_of_range_is_an_error(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    _feed(d, "/undo 5")
    code, message = _errors(recorder)[0]
    assert code == ErrorCode.SESSION_RANGE.value
    assert "only 0 available" in message


def test_settings_commands(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    _feed(d, "/temp 1.5", "/max-tokens 1000", "/system be brief", "/thinking", "/thinking-budget 5000")
    s = d.session
    assert s.temperature == 1.5
    assert s.max_tokens == 1000
    assert s.system_prompt == "be brief"
    assert s.thinking_enabled is True
    assert s.thinking_budget == 5000

    _feed(d, "/thinking", "/system", "/temp 5")
    assert s.thinking_enabled is False
    assert s.system_prompt is None
    assert s.temperature == 1.5
    assert _errors(recorder)[0][0] == ErrorCode.INVALID_COMMAND.value


def test_switching_to_unconfigured_model_fails(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    _feed(d, "/model gpt-4o")
    assert d.session.model == CLAUDE
    assert _errors(recorder)[0][0] == ErrorCode.PROVIDER_UNAVAILABLE.value


def test_save_list_and_load_by_index(make_dispatcher) -> None:
    d = make_dispatcher(ScriptedProvider([["a1"]]))
    _feed(d, "q1", "/chat save first", "/chat new")
    assert d.session.turns == []
    assert d.session.name is None

    _feed(d, "/chat list", "/chat load #1")
    assert d.session.name == "first"
    assert [t.content for t in d.session.turns] == ["q1", "a1"]


def test_index_reference_requires_a_listing(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    _feed(d, "/chat load #1", "/chat load #oops")
    codes = [code for code, _ in _errors(recorder)]
    assert codes == [ErrorCode.SESSION_REFERENCE.value, ErrorCode.SESSION_REFERENCE.value]


def test_quoted_hash_name_loads_by_name(make_dispatcher) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    saved = Session.create(CLAUDE, 0.7)
    saved.append(ChatRole.USER, "x")
    d.store.put("#1", saved)
    _feed(d, '/chat load "#1"')
    assert d.session.name == "#1"


def test_rename_and_delete(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    _feed(d, "/chat save alpha", "/chat rename beta")
    assert d.session.name == "beta"
    assert d.store.names() == ["beta"]

    _feed(d, "/chat delete")
    assert d.store.names() == []
    assert d.session.name is None

    _feed(d, "/chat delete missing")
    assert _errors(recorder)[-1][0] == ErrorCode.SESSION_NOT_FOUND.value


def test_fork_and_merge(make_dispatcher) -> None:
    d = make_dispatcher(ScriptedProvider([["a1"], ["a2"]]))
    _feed(d, "q1", "/chat save base", "/chat fork branch", "q2")
    assert d.session.name == "branch"
    assert [t.content for t in d.session.turns] == ["q1", "a1", "q2", "a2"]
    assert len(d.store.get("base").turns) == 2

    _feed(d, "/chat merge base")
    assert [t.number for t in d.session.turns] == [1, 2, 3, 4, 5, 6]


def test_persistence_failure_is_not_fatal(make_dispatcher, recorder) -> None:
    replies = iter(["hello", "/quit"])
    d = make_dispatcher(ScriptedProvider([["hi"]]), store_cls=FailingStore)

    async def read_input(prefill: str):
        return next(replies)

    asyncio.run(d.run(read_input))

    assert len(recorder.of(EventKind.SESSION_PERSIST_FAILED)) == 2
    assert [t.content for t in d.session.turns] == ["hello", "hi"]


def test_run_offers_prefill_and_persists_current(make_dispatcher, tmp_path: Path) -> None:
    d = make_dispatcher(ScriptedProvider([[server_error()], [server_error()], [server_error()]]))
    seen: list[str] = []
    replies = iter(["hello", InputSignal.EOF])

    async def read_input(prefill: str):
        seen.append(prefill)
        return next(replies)

    asyncio.run(d.run(read_input))

    assert seen == ["", "hello"]
    assert (tmp_path / "sessions" / "current.json").exists()


def test_export_writes_file(make_dispatcher, tmp_path: Path, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([["answer"]]))
    _feed(d, "question", "/chat name notes", "/export md", "/export pdf")
    assert (tmp_path / "exports" / "notes.md").exists()
    assert _errors(recorder)[-1][0] == ErrorCode.INVALID_COMMAND.value


def test_goto_and_blocks(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([["```py\nprint(1)\n```"], ["plain"]]))
    _feed(d, "q1", "q2", "/goto 2", "/block 1", "/block 2")
    assert len(d.session.turns) == 2
    notices = [e.payload["message"] for e in recorder.of(EventKind.NOTICE)]
    assert "Block 1 (py):" in notices
    assert _errors(recorder)[-1][0] == ErrorCode.SESSION_RANGE.value


def test_quoted_save_name_loads_back(make_dispatcher) -> None:
    d = make_dispatcher(ScriptedProvider([["a1"]]))
    _feed(d, "q1", '/chat save "my chat"', "/chat new", '/chat load "my chat"')
    assert d.store.names() == ["my chat"]
    assert d.session.name == "my chat"
    assert [t.content for t in d.session.turns] == ["q1", "a1"]


def test_rename_to_quoted_name_with_spaces(make_dispatcher) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    _feed(d, "/chat save old", '/chat rename "new name" old')
    assert d.store.names() == ["new name"]
    assert d.session.name == "new name"


def test_empty_quoted_name_is_rejected(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    _feed(d, '/chat name ""')
    assert d.session.name is None
    assert _errors(recorder)[0][0] == ErrorCode.SESSION_REFERENCE.value


def test_branch_copies_a_saved_session(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([["a1"]]))
    _feed(d, "q1", "/chat save base", "/chat new", '/chat branch base "base copy"')

    assert d.session.name == "base copy"
    assert [t.content for t in d.session.turns] == ["q1", "a1"]
    assert sorted(d.store.names()) == ["base", "base copy"]
    assert d.session.session_id != d.store.get("base").session_id

    _feed(d, "/chat branch missing", '/chat branch base "base copy"')
    codes = [code for code, _ in _errors(recorder)]
    assert codes == [ErrorCode.SESSION_NOT_FOUND.value, ErrorCode.SESSION_REFERENCE.value]
    assert d.session.name == "base copy"


def test_branch_by_index_without_name(make_dispatcher) -> None:
    d = make_dispatcher(ScriptedProvider([["a1"]]))
    _feed(d, "q1", "/chat save base", "/chat new", "/chat list", "/chat branch #1")
    assert d.session.name is None
    assert len(d.session.turns) == 2
    assert d.store.names() == ["base"]


def test_input_history_commands(make_dispatcher, recorder, tmp_path: Path) -> None:
    history = InputHistory(tmp_path / "input_history.txt")
    for text in ["hello", "/status", "hello"]:
        history.append_string(text)
    d = make_dispatcher(ScriptedProvider([]), input_history=history)

    _feed(d, "/input-history", "/input-history stats", "/input-history clear")

    notices = recorder.of(EventKind.NOTICE)
    assert notices[0].payload["message"] == "Input history (last 3 of 3):"
    assert notices[0].payload["lines"] == ["1. hello", "2. /status", "3. hello"]
    assert "Unique:      2" in notices[1].payload["lines"]
    assert notices[2].payload["message"] == "Cleared 3 input history entries"
    assert history.entries() == []


def test_input_history_unavailable(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([]))
    _feed(d, "/input-history")
    assert _errors(recorder)[0][0] == ErrorCode.INVALID_COMMAND.value


def test_interrupted_send_offers_text_again(make_dispatcher, recorder) -> None:
    d = make_dispatcher(ScriptedProvider([["He", asyncio.Event()]]))

    async def scenario():
        task = asyncio.create_task(d.send("hello"))
        while not recorder.of(EventKind.LLM_RESPONSE_DELTA):
            await asyncio.sleep(0)
        assert d.orchestrator.interrupt() is True
        return await task

    asyncio.run(scenario())

    assert d.prefill.kind is PrefillKind.INTERRUPTED
    assert d.prefill.kind == "interrupted"
    assert d.prefill.text == "hello"
    assert d.session.turns == []


@pytest.mark.skipif(sys.platform == "win32", reason="loop signal handlers are POSIX only")
def test_sigint_handler_restores_previous_handler() -> None:
    async def scenario():
        before = signal.getsignal(signal.SIGINT)
        with sigint_handler(lambda: None) as installed:
            assert installed
            assert signal.getsignal(signal.SIGINT) != before
        return before, signal.getsignal(signal.SIGINT)

    before, after = asyncio.run(scenario())
    assert after == before
