from __future__ import annotations

import json
from enum import StrEnum
from pathlib import Path

from .ids import format_ts_ms
from .llm.types import ChatRole
from .session import Session


class ExportFormat(StrEnum):
    MARKDOWN = "markdown"
    JSON = "json"
    TXT = "txt"


_EXTENSIONS = {
    ExportFormat.MARKDOWN: "md",
    ExportFormat.JSON: "json",
    ExportFormat.TXT: "txt",
}


def parse_export_format(raw: str) -> ExportFormat:
    value = raw.strip().lower()
    if value == "md":
        return ExportFormat.MARKDOWN
    try:
        return ExportFormat(value)
    except ValueError as e:
        choices = ", ".join(f.value for f in ExportFormat)
        raise ValueError(f"Unknown export format {raw!r} (choose from: {choices})") from e


def _speaker(session: Session, role: ChatRole, model: str | None) -> str:
    if role is ChatRole.USER:
        return "You"
    return model or session.model


def render_markdown(session: Session) -> str:
    title = session.name or session.auto_name()
    lines = [
        f"# {title}",
        "",
        f"- Model: {session.model}",
        f"- Created: {format_ts_ms(session.created_at)}",
        f"- Messages: {len(session.turns)}",
        "",
    ]
    if session.system_prompt:
        lines += ["## System", "", session.system_prompt, ""]
    for turn in session.turns:
        lines += [f"## {turn.number}. {_speaker(session, turn.role, turn.model)}", "", turn.content, ""]
    return "\n".join(lines)


def render_text(session: Session) -> str:
    lines: list[str] = []
    if session.system_prompt:
        lines += [f"[system] {session.system_prompt}", ""]
    for turn in session.turns:
        stamp = format_ts_ms(turn.created_at)
        lines += [f"[{turn.number}] {_speaker(session, turn.role, turn.model)} ({stamp}):", turn.content, ""]
    return "\n".join(lines)


def render(session: Session, fmt: ExportFormat) -> str:
    if fmt is ExportFormat.MARKDOWN:
        return render_markdown(session)
    if fmt is ExportFormat.JSON:
        return json.dumps(session.to_dict(), ensure_ascii=False, indent=2)
    return render_text(session)


def export_session(session: Session, fmt: ExportFormat, directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    stem = (session.name or session.auto_name()).replace("/", "_").replace(":", "-").replace(" ", "_")
    path = directory / f"{stem}.{_EXTENSIONS[fmt]}"
    path.write_text(render(session, fmt), encoding="utf-8")
    return path
