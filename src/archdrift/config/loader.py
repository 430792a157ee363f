"""
Runtime config loader.

Precedence is CLI > env (``ARCHDRIFT_``) > file > defaults. The file is TOML, read with
``tomllib``; path fields are normalized relative to the directory holding the file.
Environment bindings are derived from the default tree, so ``store.busy_timeout_ms`` is
overridden by ``ARCHDRIFT_STORE_BUSY_TIMEOUT_MS``. List fields are not env-bindable.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from archdrift.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "archdrift.toml"
ENV_PREFIX: Final[str] = "ARCHDRIFT_"

_FLAG_WORDS: Final[dict[str, bool]] = {
    **dict.fromkeys(("1", "true", "yes", "on"), True),
    **dict.fromkeys(("0", "false", "no", "off"), False),
}

ConfigPath = tuple[str, ...]


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load the effective config: CLI > env > file > defaults."""

    if config_path is None:
        source = (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    else:
        source = Path(config_path).expanduser().resolve()

    layered = assert_valid_config(
        merge_config(default_config(), _read_toml(source, required=config_path is not None))
    )
    layered = merge_config(
        layered, _env_layer(layered, os.environ if environ is None else environ)
    )
    layered = merge_config(layered, _cli_layer(cli_overrides or {}))
    return normalize_paths(assert_valid_config(layered), base_dir=source.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve configured path fields relative to ``base_dir``."""

    resolved = merge_config({}, config)
    for field in PATH_FIELDS:
        raw = _lookup(resolved, field)
        if not isinstance(raw, str):
            continue
        candidate = Path(os.path.expandvars(raw)).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        _assign(resolved, field, Path(os.path.normpath(candidate)).as_posix())
    return resolved


def resolve_secret(
    config: Mapping[str, object],
    section: str,
    key: str,
    *,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Read the env var named by ``config[section][key]``; ``None`` when unset or blank."""

    env_name = _lookup(config, (section, key))
    if not isinstance(env_name, str):
        return None
    value = (os.environ if environ is None else environ).get(env_name, "").strip()
    return value or None


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    return redact_config(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Deterministic JSON dump of the redacted effective config."""

    return json.dumps(
        effective_config(config), sort_keys=True, indent=2, ensure_ascii=False
    )


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _scalar_fields(
    tree: Mapping[str, object], prefix: ConfigPath = ()
) -> Iterator[tuple[ConfigPath, object]]:
    for key in sorted(tree):
        value = tree[key]
        if isinstance(value, Mapping):
            yield from _scalar_fields(value, (*prefix, key))
        elif isinstance(value, (str, int, float)):
            yield (*prefix, key), value


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overrides for every scalar field whose ``ARCHDRIFT_*`` variable is set.

    The current value's type decides how the variable's text is parsed.
    """

    layer: dict[str, Any] = {}
    for field, current in _scalar_fields(config):
        env_name = ENV_PREFIX + "_".join(field).upper()
        raw = environ.get(env_name)
        if raw is not None:
            _assign(layer, field, _parse_env(raw.strip(), type(current), env_name, field))
    return layer


def _parse_env(text: str, kind: type, env_name: str, field: ConfigPath) -> object:
    target = ".".join(field)
    if kind is bool:
        flag = _FLAG_WORDS.get(text.lower())
        if flag is None:
            raise ConfigLoadError(
                f"{env_name} -> {target} must be a boolean ({'/'.join(_FLAG_WORDS)})"
            )
        return flag
    if kind is str:
        return text
    try:
        return kind(text)
    except ValueError as exc:
        noun = "an integer" if kind is int else "a number"
        raise ConfigLoadError(f"{env_name} -> {target} must be {noun}") from exc


def _cli_layer(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted, value in sorted(cli_overrides.items()):
        if value is None:
            continue
        field = tuple(part for part in dotted.split(".") if part)
        if not field:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        _assign(layer, field, value)
    return layer


def _assign(tree: dict[str, Any], field: ConfigPath, value: object) -> None:
    *parents, leaf = field
    for part in parents:
        child = tree.get(part)
        if not isinstance(child, dict):
            child = tree[part] = {}
        tree = child
    tree[leaf] = value


def _lookup(tree: Mapping[str, object], field: ConfigPath) -> object | None:
    node: object = tree
    for part in field:
        if not isinstance(node, Mapping):
            return None
        node = node.get(part)
    return node


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "effective_config",
    "load_config",
    "normalize_paths",
    "resolve_secret",
]
