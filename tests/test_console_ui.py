from __future__ import annotations

import io

from parley.cli import _runtime_event_to_ui_events
from parley.runtime.event_bus import EventBus
from parley.runtime.protocol import Event, EventKind
from parley.ui.console_ui import ConsoleUI, UIEvent, UIEventKind


def _ui() -> tuple[ConsoleUI, io.StringIO]:
    out = io.StringIO()
    return ConsoleUI(stream=out, enable_color=True), out


def _event(kind: EventKind, **payload) -> Event:
    return Event(kind=kind.value, payload=payload, session_id="chat_1", event_id="evt_1", timestamp=0)


def test_streamed_answer_in_plain_stream() -> None:
    ui, out = _ui()
    ui.emit(UIEvent(UIEventKind.LLM_REQUEST_STARTED, {}))
    ui.emit(UIEvent(UIEventKind.THINKING_DELTA, {"text": "pondering"}))
    ui.emit(UIEvent(UIEventKind.ASSISTANT_DELTA, {"text": "\nHel"}))
    ui.emit(UIEvent(UIEventKind.ASSISTANT_DELTA, {"text": "lo"}))
    ui.emit(UIEvent(UIEventKind.ASSISTANT_COMPLETED, {}))
    assert out.getvalue() == "Thinking…\nAssistant: Hello\n"


def test_blank_line_runs_are_compacted() -> None:
    ui, out = _ui()
    ui.emit(UIEvent(UIEventKind.ASSISTANT_DELTA, {"text": "a\n\n\n\nb"}))
    ui.emit(UIEvent(UIEventKind.ASSISTANT_COMPLETED, {}))
    assert out.getvalue() == "Assistant: a\n\nb\n"


def test_notice_error_and_cancel_lines() -> None:
    ui, out = _ui()
    ui.emit(UIEvent(UIEventKind.NOTICE, {"message": "Status:", "lines": ["Model: x"]}))
    ui.emit(UIEvent(UIEventKind.ERROR_RAISED, {"message": "bad", "code": "invalid_command"}))
    ui.emit(UIEvent(UIEventKind.CANCELLED, {"message": "request interrupted"}))
    assert out.getvalue().splitlines() == [
        "Status:",
        "  Model: x",
        "[error] invalid_command: bad",
        "[cancel] request interrupted",
    ]


def test_runtime_failure_maps_to_error_with_hint() -> None:
    events = _runtime_event_to_ui_events(
        _event(EventKind.LLM_REQUEST_FAILED, error="upstream down", error_code="server_error")
    )
    assert [e.kind for e in events] == [UIEventKind.ERROR_RAISED]
    assert events[0].payload["code"] == "server_error"
    assert "resend" in events[0].payload["message"]


def test_retry_scheduled_maps_to_warning() -> None:
    events = _runtime_event_to_ui_events(
        _event(EventKind.LLM_RETRY_SCHEDULED, attempt=2, max_attempts=3, delay_s=1.0)
    )
    assert events[0].kind is UIEventKind.WARNING
    assert events[0].payload["message"] == "retrying in 1s (attempt 2/3)"


def test_bookkeeping_events_are_not_rendered() -> None:
    assert _runtime_event_to_ui_events(_event(EventKind.SESSION_PERSISTED, name=None, turns=0)) == []
    assert _runtime_event_to_ui_events(_event(EventKind.USER_TURN_APPENDED, number=1, text="x")) == []


def test_event_bus_kind_filter_and_unsubscribe() -> None:
    bus = EventBus()
    seen: list[str] = []
    stop = bus.subscribe(lambda e: seen.append(e.kind), kinds=[EventKind.NOTICE])
    bus.emit(EventKind.NOTICE, {"message": "a"}, session_id="s")
    bus.emit(EventKind.CLEAR_SCREEN, {}, session_id="s")
    stop()
    bus.emit(EventKind.NOTICE, {"message": "b"}, session_id="s")
    assert seen == ["notice"]
