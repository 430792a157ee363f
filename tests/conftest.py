"""Shared fixtures: a scratch graph store, a sample repository tree and a job payload."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from archdrift.persistence import ProjectGraphStore, StateDB

SAMPLE_REPOSITORY = "shop"
SAMPLE_FOLDERS: tuple[str, ...] = (
    "docs",
    "src",
    "src/api",
    "src/api/v1",
    "src/util",
)
SAMPLE_LOCATOR = "https://github.com/acme/shop/tree/main/src/api"


def build_tree(parent: Path, repository: str = SAMPLE_REPOSITORY) -> Path:
    """Create ``parent/repository`` with the sample folders, a few files and a ``.git`` dir."""

    root = parent / repository
    for folder in SAMPLE_FOLDERS:
        (root / folder).mkdir(parents=True, exist_ok=True)
    (root / ".git" / "objects").mkdir(parents=True, exist_ok=True)
    (root / "README.md").write_text("# shop\n", encoding="utf-8")
    (root / "src" / "api" / "handlers.py").write_text("pass\n", encoding="utf-8")
    return root


def sample_payload(project: str = "shop-model", **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "projectName": project,
        "github": {
            "username": "bot",
            "password": "ghp_exampleexampleexampleexample",
            "organization": "acme",
            "repository": SAMPLE_REPOSITORY,
            "branch": "main",
        },
        "structurizr": {"workSpaceId": 42, "apiKey": "key-1", "secret": "shh"},
        "excludedPaths": [{"path": "src/util", "note": "generated"}],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def graph_store(tmp_path: Path) -> ProjectGraphStore:
    db = StateDB(tmp_path / "state" / "archdrift.sqlite", busy_timeout_ms=1_000)
    return ProjectGraphStore(db, user="tester", secret="store-secret")


@pytest.fixture
def repo_parent(tmp_path: Path) -> Path:
    parent = tmp_path / "checkout"
    build_tree(parent)
    return parent


@pytest.fixture
def make_tree() -> Callable[..., Path]:
    return build_tree


@pytest.fixture
def job_payload() -> dict[str, Any]:
    return sample_payload()
