"""
Integration tests for real shallow clones feeding a reconciliation.

Coverage:
- shallow clone of a local origin into a per-job folder
- reconciliation over the clone, with ``.git`` ignored
- checkout removal once the run is done
- missing branch classified as a non-retryable ``not_found`` failure
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from archdrift.domain.models import ExcludedPath, GitHubSource
from archdrift.integration.base import CheckoutError
from archdrift.integration.git_checkout import GitCheckout
from archdrift.persistence.graph_store import ProjectGraphStore
from archdrift.reconciliation.classifier import reconcile

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed"),
]

_SOURCE = GitHubSource(
    username="bot",
    password="not-used",
    organization="acme",
    repository="shop",
    branch="main",
)


def _git(repo_root: Path, *args: str) -> None:
    subprocess.run(["git", *args], cwd=repo_root, check=True, text=True, capture_output=True)


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def origin(tmp_path: Path) -> str:
    repo_root = tmp_path / "origin" / "shop"
    _write(repo_root / "README.md", "# shop\n")
    _write(repo_root / "docs" / "index.md", "docs\n")
    _write(repo_root / "src" / "api" / "v1" / "routes.py", "ROUTES = []\n")
    _write(repo_root / "src" / "util" / "helpers.py", "pass\n")
    _git(repo_root, "init")
    _git(repo_root, "symbolic-ref", "HEAD", "refs/heads/main")
    _git(repo_root, "add", ".")
    _git(
        repo_root,
        "-c",
        "user.name=archdrift",
        "-c",
        "user.email=archdrift@example.com",
        "commit",
        "--no-gpg-sign",
        "-m",
        "seed",
    )
    return f"file://{repo_root.as_posix()}"


def test_clone_then_reconcile(
    tmp_path: Path, origin: str, graph_store: ProjectGraphStore
) -> None:
    git = GitCheckout(tmp_path / "checkouts")

    checkout = git.clone(_SOURCE, job_id="job-1", remote_url=origin)
    try:
        assert (checkout.path / "src" / "api" / "v1" / "routes.py").is_file()
        result = reconcile(
            graph_store,
            "shop-model",
            checkout_parent=checkout.parent,
            repository="shop",
            organization="acme",
            branch="main",
            locators=["https://github.com/acme/shop/tree/main/src/api"],
            excluded_paths=[ExcludedPath(path="src/util", note="generated")],
        )
    finally:
        git.remove(checkout)

    assert not (tmp_path / "checkouts" / "job-1").exists()
    paths = [node.full_path for node in result.nodes]
    assert paths == [
        "shop",
        "shop/docs",
        "shop/src",
        "shop/src/api",
        "shop/src/api/v1",
        "shop/src/util",
    ]
    assert result.counts() == {"Valid": 2, "Excluded": 1, "Invalid": 3}


def test_missing_branch_is_not_found(tmp_path: Path, origin: str) -> None:
    git = GitCheckout(tmp_path / "checkouts")
    source = GitHubSource(
        username="bot",
        password="not-used",
        organization="acme",
        repository="shop",
        branch="no-such-branch",
    )

    with pytest.raises(CheckoutError) as excinfo:
        git.clone(source, job_id="job-2", remote_url=origin)

    assert excinfo.value.code == "not_found"
    assert not excinfo.value.retryable
    assert not (tmp_path / "checkouts" / "job-2").exists()
