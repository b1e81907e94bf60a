from __future__ import annotations

import json
from pathlib import Path

import pytest

from parley.runtime.export import ExportFormat, export_session, parse_export_format, render_markdown
from parley.runtime.llm.types import ChatRole
from parley.runtime.search import make_excerpt, search_sessions
from parley.runtime.session import Session


def _session(*contents: str) -> Session:
    session = Session.create("claude-sonnet-4-20250514", 0.7)
    for i, content in enumerate(contents):
        session.append(ChatRole.USER if i % 2 == 0 else ChatRole.ASSISTANT, content)
    return session


def test_excerpt_highlights_match() -> None:
    assert make_excerpt("the quick brown fox", "QUICK") == "the **quick** brown fox"


def test_excerpt_trims_long_context_at_word_boundaries() -> None:
    words = " ".join(f"word{i}" for i in range(40))
    excerpt = make_excerpt(words, "word20")
    assert excerpt.startswith("...")
    assert excerpt.endswith("...")
    assert "**word20**" in excerpt
    assert len(excerpt) <= 140


def test_search_orders_current_then_saved_by_name() -> None:
    current = _session("Python rocks")
    b = _session("I like python")
    a = _session("nothing here", "python too")
    hits = search_sessions("python", current=current, saved=[("b", b), ("a", a)])
    assert [(h.session_label, h.turn_number) for h in hits] == [("current", 1), ("a", 2), ("b", 1)]


def test_search_skips_saved_copy_of_current() -> None:
    current = _session("python")
    hits = search_sessions("python", current=current, saved=[("mine", current.fork())])
    assert len(hits) == 2

    same = Session.from_dict(current.to_dict())
    hits = search_sessions("python", current=current, saved=[("mine", same)])
    assert [h.session_label for h in hits] == ["current"]


def test_blank_term_finds_nothing() -> None:
    assert search_sessions("  ", current=_session("a"), saved=[]) == []


def test_parse_export_format() -> None:
    assert parse_export_format("md") is ExportFormat.MARKDOWN
    assert parse_export_format("JSON") is ExportFormat.JSON
    with pytest.raises(ValueError, match="Unknown export format"):
        parse_export_format("pdf")


def test_markdown_lists_turns() -> None:
    session = _session("question")
    session.append_with_attribution("answer", provider="openai", model="gpt-4o")
    session.name = "demo"
    text = render_markdown(session)
    assert text.startswith("# demo")
    assert "## 1. You" in text
    assert "## 2. gpt-4o" in text


def test_export_json_file(tmp_path: Path) -> None:
    session = _session("question", "answer")
    session.name = "my chat"
    path = export_session(session, ExportFormat.JSON, tmp_path / "out")
    assert path.name == "my_chat.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert [t["content"] for t in data["turns"]] == ["question", "answer"]
