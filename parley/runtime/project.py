from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

STATE_DIR_ENV = "PARLEY_STATE_DIR"


@dataclass(frozen=True, slots=True)
class RuntimePaths:
    state_dir: Path
    sessions_dir: Path
    exports_dir: Path
    config_path: Path
    env_path: Path
    history_path: Path
    log_path: Path

    @staticmethod
    def for_state_dir(state_dir: Path) -> "RuntimePaths":
        state_dir = state_dir.expanduser().resolve()
        return RuntimePaths(
            state_dir=state_dir,
            sessions_dir=state_dir / "sessions",
            exports_dir=state_dir / "exports",
            config_path=state_dir / "config.yaml",
            env_path=state_dir / "env",
            history_path=state_dir / "input_history.txt",
            log_path=state_dir / "parley.log",
        )

    @staticmethod
    def discover(override: str | os.PathLike[str] | None = None) -> "RuntimePaths":
        if override:
            return RuntimePaths.for_state_dir(Path(override))
        env_dir = os.environ.get(STATE_DIR_ENV)
        if env_dir:
            return RuntimePaths.for_state_dir(Path(env_dir))
        return RuntimePaths.for_state_dir(Path.home() / ".parley")

    def ensure(self) -> None:
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
