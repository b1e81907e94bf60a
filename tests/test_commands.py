from __future__ import annotations

import pytest

from parley.runtime.commands import (
    COMMAND_HELP,
    CommandKind,
    SessionRefKind,
    classify,
    is_command_shaped,
    parse_session_ref,
)


def test_plain_text_is_not_a_command() -> None:
    assert classify("hello there") is None
    assert not is_command_shaped("hello /there")


def test_unknown_slash_input_is_command_shaped_but_unclassified() -> None:
    assert classify("/frobnicate") is None
    assert is_command_shaped("  /frobnicate")


@pytest.mark.parametrize(
    ("raw", "kind"),
    [
        ("/models", CommandKind.LIST_MODELS),
        ("/providers", CommandKind.LIST_PROVIDERS),
        ("/commands", CommandKind.HELP),
        ("/exit", CommandKind.QUIT),
        ("/chat recent", CommandKind.CHAT_RECENT),
        ("  /status  ", CommandKind.STATUS),
    ],
)
def test_literals(raw: str, kind: CommandKind) -> None:
    command = classify(raw)
    assert command is not None
    assert command.kind is kind


def test_undo_count() -> None:
    assert classify("/undo").number is None
    assert classify("/undo 3").number == 3
    assert classify("/undo many").number == 1


def test_goto_requires_digits() -> None:
    assert classify("/goto 5").number == 5
    assert classify("/goto five") is None


def test_numeric_settings_fall_back_to_defaults() -> None:
    assert classify("/temp 1.2").value == 1.2
    assert classify("/temp warm", default_temperature=0.4).value == 0.4
    assert classify("/max-tokens lots").number == 4096
    assert classify("/thinking-budget big").number == 20000


def test_thinking_forms() -> None:
    assert classify("/thinking").kind is CommandKind.THINKING_TOGGLE
    assert classify("/thinking ON").flag is True
    assert classify("/thinking false").flag is False
    assert classify("/thinking-budget 100").kind is CommandKind.THINKING_BUDGET


def test_system_prompt_keeps_inner_newlines() -> None:
    assert classify("/system").text == ""
    assert classify("/system line one\nline two").text == "line one\nline two"


def test_model_versus_models() -> None:
    assert classify("/model gpt-4o").text == "gpt-4o"
    assert classify("/models").kind is CommandKind.LIST_MODELS


def test_export_format_is_lowercased() -> None:
    assert classify("/export MD").text == "md"


def test_session_references() -> None:
    assert parse_session_ref("#2").index == 2
    assert parse_session_ref('"#2"').kind is SessionRefKind.NAME
    assert parse_session_ref('"#2"').name == "#2"
    assert parse_session_ref("#two").kind is SessionRefKind.INVALID
    assert parse_session_ref("notes").name == "notes"


def test_chat_commands() -> None:
    load = classify("/chat load #3")
    assert load.kind is CommandKind.CHAT_LOAD
    assert load.ref.index == 3

    assert classify("/chat delete").ref is None
    assert classify("/chat continue").ref is None
    assert classify("/chat fork").text is None
    assert classify("/chat fork branch").text == "branch"

    rename = classify("/chat rename newname old")
    assert rename.text == "newname"
    assert rename.ref.name == "old"


def test_every_help_entry_names_a_command() -> None:
    for usage, description in COMMAND_HELP:
        assert usage.startswith("/")
        assert description


def test_quoted_names_are_unquoted() -> None:
    assert classify('/chat save "my chat"').text == "my chat"
    assert classify("/chat name 'draft notes'").text == "draft notes"
    assert classify('/chat fork "side quest"').text == "side quest"
    assert classify("/chat save plain").text == "plain"


def test_rename_accepts_quoted_new_name() -> None:
    rename = classify('/chat rename "new name" old')
    assert rename.text == "new name"
    assert rename.ref.name == "old"

    current = classify("/chat rename 'only new'")
    assert current.text == "only new"
    assert current.ref is None


def test_chat_branch() -> None:
    branch = classify('/chat branch "base chat" "copy of base"')
    assert branch.kind is CommandKind.CHAT_BRANCH
    assert branch.ref.name == "base chat"
    assert branch.text == "copy of base"

    by_index = classify("/chat branch #2")
    assert by_index.ref.index == 2
    assert by_index.text is None

    assert classify("/chat branch") is None


def test_input_history_literals() -> None:
    assert classify("/input-history").kind is CommandKind.INPUT_HISTORY
    assert classify("/input-history clear").kind is CommandKind.INPUT_HISTORY_CLEAR
    assert classify("/input-history stats").kind is CommandKind.INPUT_HISTORY_STATS
    assert classify("/input-history everything") is None
