"""
envexec: runtime config loader.

Purpose
- Build the effective ``[backend]`` and ``[logging]`` settings from defaults,
  ``envexec.toml``, ``ENVEXEC_*`` variables and CLI overrides, in that order.
"""

from __future__ import annotations

import json
import os
import shlex
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

from envexec.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "envexec.toml"
ENV_PREFIX: Final[str] = "ENVEXEC_"

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def _flag(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    raise ValueError("must be one of true/false/yes/no/on/off/1/0")


def _seconds(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError("must be a number") from None


def _launcher(raw: str) -> list[str]:
    try:
        return shlex.split(raw)
    except ValueError as exc:
        raise ValueError(f"is not a shell-quoted argv ({exc})") from None


# ENVEXEC_<SECTION>_<KEY> -> (section, key, coercer). Schema validation runs afterwards.
_ENV_BINDINGS: Final[dict[str, tuple[str, str, Callable[[str], object]]]] = {
    "ENVEXEC_BACKEND_KIND": ("backend", "kind", str.lower),
    "ENVEXEC_BACKEND_WORK_DIR": ("backend", "work_dir", str),
    "ENVEXEC_BACKEND_INHERIT_HOST_ENV": ("backend", "inherit_host_env", _flag),
    "ENVEXEC_BACKEND_LAUNCHER": ("backend", "launcher", _launcher),
    "ENVEXEC_BACKEND_ENFORCE_PROC_LIMIT": ("backend", "enforce_proc_limit", _flag),
    "ENVEXEC_BACKEND_POLL_INTERVAL_SECONDS": ("backend", "poll_interval_seconds", _seconds),
    "ENVEXEC_BACKEND_WALL_TIME_FACTOR": ("backend", "wall_time_factor", _seconds),
    "ENVEXEC_LOGGING_LEVEL": ("logging", "level", str.upper),
    "ENVEXEC_LOGGING_JSON": ("logging", "json", _flag),
    "ENVEXEC_LOGGING_REDACT_SECRETS": ("logging", "redact_secrets", _flag),
}


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with precedence CLI > env > file > defaults.

    ``config_path`` defaults to ``envexec.toml`` in the working directory, which
    may be absent. An explicit path must exist. ``cli_overrides`` keys are dotted
    (``"backend.kind"``) or a section name mapped to a table.
    """

    if config_path is None:
        path = (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    else:
        path = Path(config_path).expanduser().resolve()

    merged = merge_config(default_config(), _read_toml(path, required=config_path is not None))
    merged = assert_valid_config(merged)
    merged = merge_config(merged, _env_overrides(os.environ if environ is None else environ))
    merged = merge_config(merged, _cli_overrides(cli_overrides or {}))
    merged = assert_valid_config(merged)
    return normalize_paths(merged, base_dir=path.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative path fields against ``base_dir``; empty values stay empty."""

    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        table = normalized.get(section)
        if not isinstance(table, dict):
            continue
        raw = table.get(key)
        if isinstance(raw, str) and raw:
            candidate = Path(os.path.expandvars(raw)).expanduser()
            if not candidate.is_absolute():
                candidate = base_dir / candidate
            table[key] = Path(os.path.normpath(candidate)).as_posix()
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of the effective config."""

    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    overrides: dict[str, dict[str, object]] = {}
    for env_name, (section, key, coerce) in _ENV_BINDINGS.items():
        raw = environ.get(env_name)
        if raw is None:
            continue
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {section}.{key} {exc}") from exc
        overrides.setdefault(section, {})[key] = value
    return overrides


def _cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, dict[str, object]]:
    payload: dict[str, dict[str, object]] = {}
    for dotted in sorted(cli_overrides):
        value = cli_overrides[dotted]
        section, _, key = dotted.partition(".")
        if key:
            payload.setdefault(section, {})[key] = value
        elif section and isinstance(value, Mapping):
            payload[section] = merge_config(payload.get(section, {}), value)
        else:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
    return payload


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "load_config",
    "normalize_paths",
]
