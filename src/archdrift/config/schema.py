"""
archdrift configuration schema and validation.

Defaults live in ``DEFAULT_CONFIG``; every section is strictly validated and failures are
reported as structured issues (dotted field path + message). Secret values never appear in
config: credentials are referenced by the name of an environment variable (``*_env`` keys),
and any other secret-looking key is rejected outright.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from archdrift.constants import CONFIG_SCHEMA_VERSION, DEFAULT_GIT_HOST, DEFAULT_IGNORED_DIRS

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
REPORT_BACKENDS: Final[tuple[str, ...]] = ("sheets", "markdown", "json", "none")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_ENV_NAME = re.compile(r"[A-Z_][A-Z0-9_]*")
_WORD_SPLIT = re.compile(r"[^a-z0-9]+")
_CAMEL_HUMP = re.compile(r"([a-z0-9])([A-Z])")

# Matched against whole words of a snake-cased key, then against the key as a whole.
_SECRET_WORDS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "private", "credential", "credentials"}
)
_SECRET_PHRASES: Final[tuple[str, ...]] = ("api_key", "access_token", "private_key")
_EMBEDDED_SECRET: Final[str] = (
    "embedded secret values are forbidden; use an *_env key with an env var name"
)

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("store", "endpoint"),
    ("report", "output_dir"),
    ("git", "checkout_root"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class StoreConfig(TypedDict):
    endpoint: str
    user: str
    secret_env: str
    busy_timeout_ms: int


class ReportConfig(TypedDict):
    backend: str
    document_id: str
    token_env: str
    output_dir: str
    clear_range_rows: int


class StructurizrConfig(TypedDict):
    api_url: str
    timeout_seconds: float


class GitConfig(TypedDict):
    host: str
    checkout_root: str
    ignore_dirs: list[str]


class JobsConfig(TypedDict):
    max_attempts: int
    retry_backoff_ms: int


class ObservabilityConfig(TypedDict):
    log_level: str
    log_dir: str
    redact_secrets: bool
    log_to_stdout: bool


class ArchdriftConfig(TypedDict):
    meta: MetaConfig
    store: StoreConfig
    report: ReportConfig
    structurizr: StructurizrConfig
    git: GitConfig
    jobs: JobsConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[ArchdriftConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "store": {
        "endpoint": "state/archdrift.sqlite",
        "user": "archdrift",
        "secret_env": "ARCHDRIFT_STORE_SECRET",
        "busy_timeout_ms": 5_000,
    },
    "report": {
        "backend": "markdown",
        "document_id": "",
        "token_env": "ARCHDRIFT_SHEETS_TOKEN",
        "output_dir": "reports",
        "clear_range_rows": 1_000,
    },
    "structurizr": {
        "api_url": "https://api.structurizr.com",
        "timeout_seconds": 10.0,
    },
    "git": {
        "host": DEFAULT_GIT_HOST,
        "checkout_root": "checkouts",
        "ignore_dirs": list(DEFAULT_IGNORED_DIRS),
    },
    "jobs": {
        "max_attempts": 3,
        "retry_backoff_ms": 500,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs",
        "redact_secrets": True,
        "log_to_stdout": True,
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
        lines = [f"- {item.path}: {item.message}" for item in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


class _Rejected(ValueError):
    """One field value failed its check. ``at`` is appended to the field's dotted path."""

    def __init__(self, message: str, *, at: str = "") -> None:
        super().__init__(message)
        self.at = at


Check = Callable[[object], object]


def _type_name(value: object) -> str:
    return type(value).__name__


def _text(value: object) -> str:
    if not isinstance(value, str):
        raise _Rejected(f"expected string, got {_type_name(value)}")
    stripped = value.strip()
    if not stripped:
        raise _Rejected("must not be empty")
    return stripped


def _optional_text(value: object) -> str:
    if not isinstance(value, str):
        raise _Rejected(f"expected string, got {_type_name(value)}")
    return value.strip()


def _path_text(value: object) -> str:
    text = _text(value)
    if "\x00" in text:
        raise _Rejected("must not contain NUL bytes")
    return text


def _env_name(value: object) -> str:
    text = _text(value)
    if not _ENV_NAME.fullmatch(text):
        raise _Rejected("must be an env var name (example: ARCHDRIFT_SHEETS_TOKEN)")
    return text


def _flag(value: object) -> bool:
    if not isinstance(value, bool):
        raise _Rejected(f"expected boolean, got {_type_name(value)}")
    return value


def _at_least(minimum: int) -> Check:
    def check(value: object) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _Rejected(f"expected integer, got {_type_name(value)}")
        if value < minimum:
            raise _Rejected(f"must be >= {minimum}")
        return value

    return check


def _positive_seconds(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _Rejected(f"expected number, got {_type_name(value)}")
    seconds = float(value)
    if not math.isfinite(seconds):
        raise _Rejected("must be finite")
    if seconds <= 0:
        raise _Rejected("must be > 0")
    return seconds


def _one_of(options: tuple[str, ...], *, upper: bool = False) -> Check:
    def check(value: object) -> str:
        choice = _text(value)
        if upper:
            choice = choice.upper()
        if choice not in options:
            expected = ", ".join(sorted(options))
            raise _Rejected(f"invalid value {choice!r}; expected one of: {expected}")
        return choice

    return check


def _schema_version(value: object) -> int:
    version = _at_least(1)(value)
    if version != ConfigSchemaVersion:
        raise _Rejected(migration_guidance(version))
    return version


def _http_url(value: object) -> str:
    url = _text(value)
    if not url.startswith(("https://", "http://")):
        raise _Rejected("must be an http(s) URL")
    return url.rstrip("/")


def _bare_host(value: object) -> str:
    host = _text(value)
    if "/" in host:
        raise _Rejected("must be a bare host name")
    return host


def _folder_names(value: object) -> list[str]:
    if not isinstance(value, list):
        raise _Rejected(f"expected list, got {_type_name(value)}")
    names: list[str] = []
    for index, item in enumerate(value):
        try:
            name = _text(item)
        except _Rejected as exc:
            raise _Rejected(str(exc), at=f"[{index}]") from None
        if "/" in name or "\\" in name:
            raise _Rejected("must be a single folder name", at=f"[{index}]")
        if name not in names:
            names.append(name)
    return names


_SECTIONS: Final[dict[str, dict[str, Check]]] = {
    "meta": {"schema_version": _schema_version},
    "store": {
        "endpoint": _path_text,
        "user": _text,
        "secret_env": _env_name,
        "busy_timeout_ms": _at_least(0),
    },
    "report": {
        "backend": _one_of(REPORT_BACKENDS),
        "document_id": _optional_text,
        "token_env": _env_name,
        "output_dir": _path_text,
        "clear_range_rows": _at_least(1),
    },
    "structurizr": {"api_url": _http_url, "timeout_seconds": _positive_seconds},
    "git": {"host": _bare_host, "checkout_root": _path_text, "ignore_dirs": _folder_names},
    "jobs": {"max_attempts": _at_least(1), "retry_backoff_ms": _at_least(0)},
    "observability": {
        "log_level": _one_of(LOG_LEVELS, upper=True),
        "log_dir": _path_text,
        "redact_secrets": _flag,
        "log_to_stdout": _flag,
    },
}


def default_config() -> ArchdriftConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade archdrift.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade archdrift"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base`` without mutating either."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        if isinstance(value, Mapping):
            current = merged.get(key)
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with dotted paths."""

    if not isinstance(config, Mapping):
        issue = ConfigValidationIssue("<root>", f"expected object, got {_type_name(config)}")
        return ConfigValidationResult(config=None, issues=(issue,))

    issues: list[ConfigValidationIssue] = []
    normalized: dict[str, Any] = {}
    _check_keys(config, _SECTIONS, "", issues)
    for section, fields in _SECTIONS.items():
        payload = config.get(section)
        if payload is None:
            continue
        if not isinstance(payload, Mapping):
            issues.append(
                ConfigValidationIssue(section, f"expected object, got {_type_name(payload)}")
            )
            continue
        _check_keys(payload, fields, section, issues)
        cleaned: dict[str, Any] = {}
        for key, check in fields.items():
            if key not in payload:
                continue
            try:
                cleaned[key] = check(payload[key])
            except _Rejected as exc:
                issues.append(ConfigValidationIssue(f"{section}.{key}{exc.at}", str(exc)))
        normalized[section] = cleaned

    report = normalized.get("report", {})
    if report.get("backend") == "sheets" and not report.get("document_id"):
        issues.append(
            ConfigValidationIssue("report.document_id", "required when report.backend is 'sheets'")
        )

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return a redacted copy suitable for logs and ``archdrift config`` output."""

    if not isinstance(config, Mapping):
        return {}
    return _redacted(config)


def _redacted(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _looks_sensitive_key(str(key)) else _redacted(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redacted(item) for item in value]
    return value


def _check_keys(
    payload: Mapping[Any, object],
    expected: Mapping[str, object],
    prefix: str,
    issues: list[ConfigValidationIssue],
) -> None:
    def where(key: str) -> str:
        return f"{prefix}.{key}" if prefix else key

    for key in sorted(map(str, payload)):
        if key not in expected:
            message = _EMBEDDED_SECRET if _looks_sensitive_key(key) else "unknown field"
            issues.append(ConfigValidationIssue(where(key), message))
    for key in expected:
        if key not in payload:
            issues.append(ConfigValidationIssue(where(key), "missing required field"))


def _looks_sensitive_key(key: str) -> bool:
    """``*_env`` keys name an environment variable and are never secret themselves."""

    snake = _WORD_SPLIT.sub("_", _CAMEL_HUMP.sub(r"\1_\2", key.strip()).lower()).strip("_")
    if snake.endswith("_env"):
        return False
    if any(phrase in snake for phrase in _SECRET_PHRASES):
        return True
    return any(word in _SECRET_WORDS for word in snake.split("_"))


__all__ = [
    "ArchdriftConfig",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "REPORT_BACKENDS",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
