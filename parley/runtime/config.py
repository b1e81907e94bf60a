from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import strictyaml

from .llm.types import ProviderKind, provider_for_model

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096
DEFAULT_THINKING_BUDGET = 20000
DEFAULT_TIMEOUT_S = 60.0

DEFAULT_MODELS: dict[ProviderKind, str] = {
    ProviderKind.ANTHROPIC: "claude-sonnet-4-20250514",
    ProviderKind.OPENAI: "o3-pro",
    ProviderKind.GEMINI: "gemini-2.5-pro",
}

API_KEY_ENV: dict[ProviderKind, str] = {
    ProviderKind.OPENAI: "OPENAI_API_KEY",
    ProviderKind.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderKind.GEMINI: "GEMINI_API_KEY",
}

_CONFIG_SCHEMA = strictyaml.Map(
    {
        strictyaml.Optional("model"): strictyaml.Str(),
        strictyaml.Optional("temperature"): strictyaml.Float(),
        strictyaml.Optional("max_tokens"): strictyaml.Int(),
        strictyaml.Optional("thinking_budget"): strictyaml.Int(),
        strictyaml.Optional("timeout_s"): strictyaml.Float(),
        strictyaml.Optional("system_prompt"): strictyaml.Str(),
        strictyaml.Optional("api_keys"): strictyaml.MapPattern(strictyaml.Str(), strictyaml.Str()),
    }
)


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    model: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    thinking_budget: int = DEFAULT_THINKING_BUDGET
    timeout_s: float | None = DEFAULT_TIMEOUT_S
    system_prompt: str | None = None
    api_keys: dict[ProviderKind, str] = field(default_factory=dict)

    def available_providers(self) -> list[ProviderKind]:
        order = (ProviderKind.ANTHROPIC, ProviderKind.OPENAI, ProviderKind.GEMINI)
        return [kind for kind in order if self.api_keys.get(kind)]

    def default_model(self) -> str:
        """
        Resolve the startup model.

        An explicitly configured model wins when its provider has a key; otherwise the
        default model of the first configured provider is used.
        """

        available = self.available_providers()
        if not available:
            raise ConfigError(
                "No API key configured. Set one of " + ", ".join(API_KEY_ENV[k] for k in API_KEY_ENV) + "."
            )
        if self.model:
            kind = provider_for_model(self.model)
            if kind is None or kind in available:
                return self.model
        return DEFAULT_MODELS[available[0]]


def parse_env_text(raw: str) -> dict[str, str]:
    env: dict[str, str] = {}
    for line_no, line in enumerate(raw.splitlines(), start=1):
        s = line.strip()
        if not s or s.startswith("#"):
            continue
        if s.startswith("export "):
            s = s[len("export ") :].lstrip()
        if "=" not in s:
            raise ConfigError(f"Invalid env line (missing '=') at line {line_no}")
        key, value = s.split("=", 1)
        key = key.strip()
        if not key:
            raise ConfigError(f"Invalid env line (empty key) at line {line_no}")
        value = value.strip()
        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]
        env[key] = value
    return env


def load_env_file(path: Path) -> dict[str, str]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        raise ConfigError(f"Failed to read env file: {path} ({e})") from e
    return parse_env_text(raw)


def load_config_file(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path} ({e})") from e
    if not raw.strip():
        return {}
    try:
        data = strictyaml.load(raw, _CONFIG_SCHEMA).data
    except strictyaml.YAMLError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e
    return dict(data)


def _maybe_float(value: str | None, *, key: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"Invalid float for {key}: {value!r}") from e


def _maybe_int(value: str | None, *, key: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"Invalid integer for {key}: {value!r}") from e


def _apply_file(config: AppConfig, data: Mapping[str, Any]) -> AppConfig:
    keys = dict(config.api_keys)
    for name, value in dict(data.get("api_keys") or {}).items():
        try:
            kind = ProviderKind(str(name).strip().lower())
        except ValueError as e:
            raise ConfigError(f"Unknown provider in api_keys: {name!r}") from e
        keys[kind] = str(value)
    return replace(
        config,
        model=data.get("model", config.model),
        temperature=data.get("temperature", config.temperature),
        max_tokens=data.get("max_tokens", config.max_tokens),
        thinking_budget=data.get("thinking_budget", config.thinking_budget),
        timeout_s=data.get("timeout_s", config.timeout_s),
        system_prompt=data.get("system_prompt", config.system_prompt),
        api_keys=keys,
    )


def _apply_env(config: AppConfig, env: Mapping[str, str]) -> AppConfig:
    keys = dict(config.api_keys)
    for kind, name in API_KEY_ENV.items():
        value = env.get(name)
        if value:
            keys[kind] = value
    temperature = _maybe_float(env.get("PARLEY_TEMPERATURE"), key="PARLEY_TEMPERATURE")
    max_tokens = _maybe_int(env.get("PARLEY_MAX_TOKENS"), key="PARLEY_MAX_TOKENS")
    budget = _maybe_int(env.get("PARLEY_THINKING_BUDGET"), key="PARLEY_THINKING_BUDGET")
    timeout_s = _maybe_float(env.get("PARLEY_TIMEOUT_S"), key="PARLEY_TIMEOUT_S")
    return replace(
        config,
        model=env.get("PARLEY_MODEL") or config.model,
        temperature=config.temperature if temperature is None else temperature,
        max_tokens=config.max_tokens if max_tokens is None else max_tokens,
        thinking_budget=config.thinking_budget if budget is None else budget,
        timeout_s=config.timeout_s if timeout_s is None else timeout_s,
        system_prompt=env.get("PARLEY_SYSTEM_PROMPT") or config.system_prompt,
        api_keys=keys,
    )


def load_app_config(
    *,
    config_path: Path,
    env_path: Path,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """
    Build the startup configuration.

    Layers, later wins:
      - built-in defaults
      - `config.yaml` in the state directory
      - `env` file in the state directory
      - process environment
      - explicit overrides (CLI flags); `None` values are ignored
    """

    config = AppConfig()
    config = _apply_file(config, load_config_file(config_path))
    config = _apply_env(config, load_env_file(env_path))
    config = _apply_env(config, os.environ if environ is None else environ)

    overrides = {k: v for k, v in dict(overrides or {}).items() if v is not None}
    keys = dict(config.api_keys)
    for kind in ProviderKind:
        value = overrides.pop(f"{kind.value}_key", None)
        if value:
            keys[kind] = str(value)
    config = replace(config, api_keys=keys, **overrides)

    if not 0.0 <= config.temperature <= 2.0:
        raise ConfigError(f"Temperature must be between 0.0 and 2.0, got {config.temperature}")
    if config.max_tokens < 1:
        raise ConfigError(f"max_tokens must be >= 1, got {config.max_tokens}")
    if config.thinking_budget < 1:
        raise ConfigError(f"thinking_budget must be >= 1, got {config.thinking_budget}")
    return config
