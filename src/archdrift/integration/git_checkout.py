"""Scratch repository checkouts: shallow ``git clone --branch`` into a per-job folder."""

from __future__ import annotations

import base64
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final

import structlog

from archdrift.constants import DEFAULT_GIT_HOST
from archdrift.domain.models import GitHubSource
from archdrift.integration.base import AuthorizationError, CheckoutError
from archdrift.utils.fs import safe_delete

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = structlog.get_logger(__name__)

_JOB_DIR_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9._-]+$")

_AUTH_MARKERS: Final[tuple[str, ...]] = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "permission denied",
    "the requested url returned error: 401",
    "the requested url returned error: 403",
)
_NOT_FOUND_MARKERS: Final[tuple[str, ...]] = (
    "repository not found",
    "not found in upstream",
    "remote branch",
    "does not appear to be a git repository",
    "does not exist",
    "the requested url returned error: 404",
)
_TRANSIENT_MARKERS: Final[tuple[str, ...]] = (
    "could not resolve host",
    "connection timed out",
    "operation timed out",
    "connection reset",
    "early eof",
    "the remote end hung up unexpectedly",
    "the requested url returned error: 429",
    "the requested url returned error: 5",
)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result for git invocations."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str


@dataclass(frozen=True, slots=True)
class Checkout:
    """A cloned repository at ``parent / repository``."""

    parent: Path
    repository: str
    branch: str

    @property
    def path(self) -> Path:
        return self.parent / self.repository


class GitCheckout:
    """Clone repositories under ``checkout_root`` and remove them afterwards."""

    def __init__(
        self,
        checkout_root: Path | str,
        *,
        host: str = DEFAULT_GIT_HOST,
        scheme: str = "https",
        timeout_seconds: float | None = 300.0,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self._root = Path(checkout_root).expanduser()
        self._host = host
        self._scheme = scheme
        self._timeout_seconds = timeout_seconds
        self._env_overrides = dict(env_overrides or {})

    @property
    def root(self) -> Path:
        return self._root

    def remote_url(self, source: GitHubSource) -> str:
        return f"{self._scheme}://{self._host}/{source.organization}/{source.repository}.git"

    def clone(
        self,
        source: GitHubSource,
        *,
        job_id: str,
        remote_url: str | None = None,
    ) -> Checkout:
        if not _JOB_DIR_RE.fullmatch(job_id):
            raise ValueError(f"job_id is not a safe folder name: {job_id!r}")
        self._root.mkdir(parents=True, exist_ok=True)
        parent = self._root / job_id
        if parent.exists():
            safe_delete(parent, self._root)
        parent.mkdir(parents=True)

        checkout = Checkout(parent=parent, repository=source.repository, branch=source.branch)
        url = remote_url or self.remote_url(source)
        logger.info(
            "checkout_clone_started",
            url=url,
            branch=source.branch,
            destination=str(checkout.path),
        )
        try:
            self._run_git(
                ["clone", "--depth", "1", "--branch", source.branch, url, source.repository],
                cwd=parent,
                extra_env=_auth_header_env(source),
                secrets=(source.password,),
            )
        except Exception:
            self.remove(checkout)
            raise
        logger.info("checkout_clone_finished", destination=str(checkout.path))
        return checkout

    def remove(self, checkout: Checkout) -> bool:
        removed = safe_delete(checkout.parent, self._root) if self._root.exists() else False
        logger.info("checkout_removed", destination=str(checkout.parent), removed=removed)
        return removed

    def _run_git(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
        extra_env: Mapping[str, str] | None = None,
        secrets: Sequence[str] = (),
    ) -> CommandResult:
        command = ("git", *args)
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
        env.update(self._env_overrides)
        env.update(extra_env or {})

        try:
            completed = subprocess.run(
                command,
                cwd=cwd,
                env=env,
                text=True,
                capture_output=True,
                check=False,
                timeout=self._timeout_seconds,
            )
        except FileNotFoundError as exc:
            raise CheckoutError("git executable not found on PATH", code="git_missing") from exc
        except subprocess.TimeoutExpired as exc:
            raise CheckoutError(
                f"git {args[0]} timed out after {self._timeout_seconds}s",
                code="timeout",
                retryable=True,
            ) from exc

        result = CommandResult(
            command=command,
            cwd=cwd.as_posix(),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=_scrub(completed.stderr, secrets),
        )
        if result.returncode != 0:
            raise _classify_failure(result)
        return result


def _auth_header_env(source: GitHubSource) -> dict[str, str]:
    # Credentials stay out of argv and the remote URL.
    token = base64.b64encode(f"{source.username}:{source.password}".encode()).decode("ascii")
    return {
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.extraHeader",
        "GIT_CONFIG_VALUE_0": f"Authorization: Basic {token}",
    }


def _scrub(text: str, secrets: Sequence[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***REDACTED***")
    return text


def _classify_failure(result: CommandResult) -> CheckoutError | AuthorizationError:
    stderr = result.stderr.strip()
    lowered = stderr.lower()
    detail = f"git command failed ({result.returncode}): {' '.join(result.command[:2])}"
    if stderr:
        detail = f"{detail}: {stderr}"
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return AuthorizationError(detail, source="git")
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return CheckoutError(detail, code="not_found")
    if any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return CheckoutError(detail, code="network", retryable=True)
    return CheckoutError(detail)


__all__ = ["Checkout", "CommandResult", "GitCheckout"]
