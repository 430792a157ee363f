"""
Config package public API: ``archdrift.toml`` + ``ARCHDRIFT_`` env overrides, strict
validation with structured issues, and redacted dumps.
"""

from archdrift.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    effective_config,
    load_config,
    normalize_paths,
    resolve_secret,
)
from archdrift.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    REPORT_BACKENDS,
    ArchdriftConfig,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)

__all__ = [
    "ArchdriftConfig",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PATH_FIELDS",
    "REPORT_BACKENDS",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "effective_config",
    "load_config",
    "merge_config",
    "normalize_paths",
    "redact_config",
    "resolve_secret",
    "validate_config",
]
