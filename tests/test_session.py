from __future__ import annotations

import pytest

from parley.runtime.llm.types import ChatRole
from parley.runtime.session import Session, SessionRangeError


def _session_with(*contents: str) -> Session:
    session = Session.create("claude-sonnet-4-20250514", 0.7)
    for i, content in enumerate(contents):
        session.append(ChatRole.USER if i % 2 == 0 else ChatRole.ASSISTANT, content)
    return session


def test_append_numbers_turns_from_one() -> None:
    session = _session_with("a", "b", "c")
    assert [t.number for t in session.turns] == [1, 2, 3]
    assert len(session) == 3


def test_updated_at_moves_forward() -> None:
    session = _session_with()
    before = session.updated_at
    session.append(ChatRole.USER, "x")
    assert session.updated_at > before


def test_undo() -> None:
    session = _session_with("a", "b", "c", "d")
    removed = session.undo(2)
    assert [t.content for t in removed] == ["c", "d"]
    assert [t.content for t in session.turns] == ["a", "b"]

    with pytest.raises(SessionRangeError, match="Cannot undo 3 messages, only 2 available"):
        session.undo(3)
    with pytest.raises(SessionRangeError):
        session.undo(0)


def test_goto_keeps_prefix() -> None:
    session = _session_with("a", "b", "c", "d")
    session.goto(1)
    assert [t.content for t in session.turns] == ["a"]
    with pytest.raises(SessionRangeError):
        session.goto(2)
    with pytest.raises(SessionRangeError):
        session.goto(0)


def test_retract_only_removes_trailing_user_turn() -> None:
    session = _session_with("a", "b")
    assert session.retract_last_if_unpaired() is None
    session.append(ChatRole.USER, "c")
    assert session.retract_last_if_unpaired().content == "c"
    assert len(session) == 2


def test_messages_put_system_prompt_first() -> None:
    session = _session_with("a", "b")
    session.system_prompt = "sys"
    roles = [m.role for m in session.messages()]
    assert roles == [ChatRole.SYSTEM, ChatRole.USER, ChatRole.ASSISTANT]


def test_code_blocks_from_assistant_turns() -> None:
    session = _session_with("```python\nignored\n```", "Here:\n```python\nprint(1)\n```\nand\n```\nx\n```")
    blocks = session.code_blocks()
    assert [(b.index, b.language, b.code, b.turn_number) for b in blocks] == [
        (1, "python", "print(1)", 2),
        (2, "", "x", 2),
    ]


def test_merge_renumbers() -> None:
    target = _session_with("a", "b")
    other = _session_with("c", "d")
    other.has_llm_interaction = True
    assert target.merge(other) == 2
    assert [t.number for t in target.turns] == [1, 2, 3, 4]
    assert target.has_llm_interaction


def test_fork_copies_log_under_new_id() -> None:
    session = _session_with("a", "b")
    session.name = "orig"
    forked = session.fork()
    assert forked.session_id != session.session_id
    assert forked.name is None
    forked.append(ChatRole.USER, "c")
    assert len(session) == 2


def test_auto_save_rule() -> None:
    session = _session_with("a")
    assert not session.should_auto_save()
    session.append_with_attribution("b", provider="anthropic", model="claude-sonnet-4-20250514")
    assert session.should_auto_save()
    session.name = "named"
    assert not session.should_auto_save()


def test_from_dict_renumbers_and_keeps_attribution() -> None:
    session = _session_with("a")
    session.append_with_attribution("b", provider="openai", model="gpt-4o")
    raw = session.to_dict()
    raw["turns"][1]["number"] = 7

    loaded = Session.from_dict(raw)

    assert [t.number for t in loaded.turns] == [1, 2]
    assert loaded.turns[1].provider == "openai"
    assert loaded.turns[1].model == "gpt-4o"
    assert loaded.has_llm_interaction
