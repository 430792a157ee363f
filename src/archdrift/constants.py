"""Stable constants shared across archdrift components."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 1

# Path node field values.
DEFAULT_NOTE: Final[str] = "ERROR"
VISITED_NOTE: Final[str] = "exist in the model"
STORE_SEPARATOR: Final[str] = "/"

# Report layout.
REPORT_HEADER: Final[tuple[str, str, str]] = ("Full Path", "Status", "Notes")

# Message bus channels.
JOB_REQUEST_CHANNEL: Final[str] = "/validate"
JOB_STATUS_CHANNEL: Final[str] = "/validate/status"

# Default runtime paths (relative to the config file directory unless overridden).
STATE_DIR: Final[PurePosixPath] = PurePosixPath("state")
CHECKOUTS_DIR: Final[PurePosixPath] = PurePosixPath("checkouts")
REPORTS_DIR: Final[PurePosixPath] = PurePosixPath("reports")
LOGS_DIR: Final[PurePosixPath] = PurePosixPath("logs")

DEFAULT_GIT_HOST: Final[str] = "github.com"
DEFAULT_IGNORED_DIRS: Final[tuple[str, ...]] = (".git",)

__all__ = [
    "CHECKOUTS_DIR",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_GIT_HOST",
    "DEFAULT_IGNORED_DIRS",
    "DEFAULT_NOTE",
    "JOB_REQUEST_CHANNEL",
    "JOB_STATUS_CHANNEL",
    "LOGS_DIR",
    "REPORTS_DIR",
    "REPORT_HEADER",
    "STATE_DB_SCHEMA_VERSION",
    "STATE_DIR",
    "STORE_SEPARATOR",
    "VISITED_NOTE",
]
