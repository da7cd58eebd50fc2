"""
envexec: configuration schema and validation.

Purpose
- Define authoritative configuration defaults and strict validation rules.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown keys so typos in ``envexec.toml`` fail loudly.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

BACKEND_KINDS: Final[tuple[str, ...]] = ("process", "sandbox")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("backend", "work_dir"),)


class BackendConfig(TypedDict):
    kind: Literal["process", "sandbox"]
    work_dir: str
    inherit_host_env: bool
    launcher: list[str]
    enforce_proc_limit: bool
    poll_interval_seconds: float
    wall_time_factor: float


class LoggingSettings(TypedDict):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    json: bool
    redact_secrets: bool


class EnvExecConfig(TypedDict):
    backend: BackendConfig
    logging: LoggingSettings


DEFAULT_CONFIG: Final[EnvExecConfig] = {
    "backend": {
        "kind": "process",
        "work_dir": "",
        "inherit_host_env": False,
        "launcher": [],
        "enforce_proc_limit": False,
        "poll_interval_seconds": 0.005,
        "wall_time_factor": 3.0,
    },
    "logging": {
        "level": "INFO",
        "json": True,
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)


def default_config() -> dict[str, Any]:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(dict(DEFAULT_CONFIG))


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=issues.items())

    _reject_unknown_keys(config, {"backend", "logging"}, "", issues)
    out: dict[str, Any] = {}

    backend = config.get("backend")
    if isinstance(backend, Mapping):
        out["backend"] = _validate_backend(backend, "backend", issues)
    else:
        issues.add("backend", "expected object")

    logging_section = config.get("logging")
    if isinstance(logging_section, Mapping):
        out["logging"] = _validate_logging(logging_section, "logging", issues)
    else:
        issues.add("logging", "expected object")

    found = issues.items()
    if found:
        return ConfigValidationResult(config=None, issues=found)
    return ConfigValidationResult(config=out, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_backend(
    section: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(section, set(DEFAULT_CONFIG["backend"]), path, issues)
    out: dict[str, Any] = {}

    kind = section.get("kind")
    if not isinstance(kind, str) or kind.strip().lower() not in BACKEND_KINDS:
        issues.add(f"{path}.kind", f"must be one of: {', '.join(BACKEND_KINDS)}")
    else:
        out["kind"] = kind.strip().lower()

    work_dir = section.get("work_dir")
    if not isinstance(work_dir, str):
        issues.add(f"{path}.work_dir", "expected string")
    else:
        out["work_dir"] = work_dir.strip()

    launcher = section.get("launcher")
    if not isinstance(launcher, (list, tuple)) or not all(
        isinstance(item, str) and item.strip() for item in launcher
    ):
        issues.add(f"{path}.launcher", "expected list of non-empty strings")
    else:
        out["launcher"] = [item.strip() for item in launcher]

    for key in ("inherit_host_env", "enforce_proc_limit"):
        value = section.get(key)
        if not isinstance(value, bool):
            issues.add(f"{path}.{key}", "expected boolean")
        else:
            out[key] = value

    for key in ("poll_interval_seconds", "wall_time_factor"):
        number = _as_positive_float(section.get(key), f"{path}.{key}", issues)
        if number is not None:
            out[key] = number

    return out


def _validate_logging(
    section: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(section, set(DEFAULT_CONFIG["logging"]), path, issues)
    out: dict[str, Any] = {}

    level = section.get("level")
    if not isinstance(level, str) or level.strip().upper() not in LOG_LEVELS:
        issues.add(f"{path}.level", f"must be one of: {', '.join(LOG_LEVELS)}")
    else:
        out["level"] = level.strip().upper()

    for key in ("json", "redact_secrets"):
        value = section.get(key)
        if not isinstance(value, bool):
            issues.add(f"{path}.{key}", "expected boolean")
        else:
            out[key] = value

    return out


def _as_positive_float(value: object, path: str, issues: _IssueCollector) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        issues.add(path, "must be a finite number > 0")
        return None
    return number


def _reject_unknown_keys(
    payload: Mapping[str, object], allowed: set[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(str(item) for item in payload):
        if key not in allowed:
            issues.add(f"{path}.{key}" if path else key, "unknown key")


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


__all__ = [
    "BACKEND_KINDS",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "BackendConfig",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "EnvExecConfig",
    "LoggingSettings",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "validate_config",
]
