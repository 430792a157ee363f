"""Executable CLI entrypoint for ``archdrift``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    JOB_FAILED = 1
    CONFIG_ERROR = 2
    ACQUISITION_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m archdrift`` and the ``archdrift`` script."""

    try:
        from archdrift.ui.cli import run_cli

        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _as_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - every failure becomes an exit code here.
        code = _route_exception(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(str(exc).strip() or type(exc).__name__, file=sys.stderr)
        return int(code)


def _as_exit_code(raw: object) -> int:
    if raw is None:
        return ExitCode.SUCCESS
    if isinstance(raw, int) and raw in ExitCode.__members__.values():
        return raw
    if isinstance(raw, str) and raw.strip():
        print(raw.strip(), file=sys.stderr)
    return ExitCode.INTERNAL_ERROR


def _route_exception(exc: BaseException) -> ExitCode:
    """Map the first recognised error along the cause chain to an exit code."""

    from archdrift.config.loader import ConfigLoadError
    from archdrift.config.schema import ConfigValidationError
    from archdrift.domain.models import DomainValidationError
    from archdrift.integration.base import AcquisitionError
    from archdrift.persistence.state_db import StateDBAuthError

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        (
            (ConfigLoadError, ConfigValidationError, DomainValidationError, StateDBAuthError),
            ExitCode.CONFIG_ERROR,
        ),
        ((AcquisitionError,), ExitCode.ACQUISITION_ERROR),
        (
            (FileNotFoundError, NotADirectoryError, PermissionError, ValueError),
            ExitCode.CONFIG_ERROR,
        ),
    )
    for cause in _causes(exc):
        for error_types, code in routes:
            if isinstance(cause, error_types):
                return code
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None or current.__suppress_context__:
            current = current.__cause__
        else:
            current = current.__context__


__all__ = ["ExitCode", "cli_entrypoint"]
