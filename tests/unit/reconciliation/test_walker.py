"""Folder walker ordering, filtering and cycle handling."""

from __future__ import annotations

import os
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from archdrift.reconciliation.walker import FolderRecord, walk_folders

TreeFactory = Callable[..., Path]


def test_walk_yields_root_first_then_preorder(tmp_path: Path, make_tree: TreeFactory) -> None:
    make_tree(tmp_path)

    records = list(walk_folders(tmp_path, "shop"))

    assert [record.full_path for record in records] == [
        "shop",
        "shop/docs",
        "shop/src",
        "shop/src/api",
        "shop/src/api/v1",
        "shop/src/util",
    ]
    assert records[0] == FolderRecord(name="shop", full_path="shop", depth=0)
    assert records[-1].depth == 2


def test_walk_skips_files_and_ignored_dirs(tmp_path: Path, make_tree: TreeFactory) -> None:
    make_tree(tmp_path)

    keys = {record.full_path for record in walk_folders(tmp_path, "shop")}

    assert "shop/.git" not in keys
    assert "shop/README.md" not in keys
    assert "shop/src/api/handlers.py" not in keys


def test_walk_with_empty_ignore_includes_git_dir(tmp_path: Path, make_tree: TreeFactory) -> None:
    make_tree(tmp_path)

    keys = {record.full_path for record in walk_folders(tmp_path, "shop", ignore=())}

    assert {"shop/.git", "shop/.git/objects"} <= keys


def test_empty_relative_yields_nothing(tmp_path: Path, make_tree: TreeFactory) -> None:
    make_tree(tmp_path)

    assert list(walk_folders(tmp_path, "")) == []
    assert list(walk_folders(tmp_path, "/")) == []


def test_missing_root_raises(tmp_path: Path) -> None:
    with pytest.raises(NotADirectoryError):
        list(walk_folders(tmp_path, "absent"))


def test_custom_separator_applies_to_keys(tmp_path: Path, make_tree: TreeFactory) -> None:
    make_tree(tmp_path)

    keys = [record.full_path for record in walk_folders(tmp_path, "shop", separator="::")]

    assert "shop::src::api" in keys


@pytest.mark.skipif(sys.platform.startswith("win"), reason="symlink creation needs privileges")
def test_symlink_cycle_terminates(tmp_path: Path, make_tree: TreeFactory) -> None:
    root = make_tree(tmp_path)
    os.symlink(root / "src", root / "src" / "api" / "loop", target_is_directory=True)

    keys = [record.full_path for record in walk_folders(tmp_path, "shop")]

    assert "shop/src/api/loop" not in keys
    assert len(keys) == len(set(keys)) == 6


@pytest.mark.skipif(sys.platform.startswith("win"), reason="symlink creation needs privileges")
def test_symlinked_directory_outside_tree_is_followed_once(
    tmp_path: Path,
    make_tree: TreeFactory,
) -> None:
    root = make_tree(tmp_path / "checkout")
    shared = tmp_path / "shared" / "assets"
    shared.mkdir(parents=True)
    os.symlink(tmp_path / "shared", root / "docs" / "shared", target_is_directory=True)
    os.symlink(tmp_path / "shared", root / "src" / "shared", target_is_directory=True)

    keys = [record.full_path for record in walk_folders(tmp_path / "checkout", "shop")]

    assert "shop/docs/shared" in keys
    assert "shop/docs/shared/assets" in keys
    assert "shop/src/shared" not in keys


def test_walk_without_following_symlinks(tmp_path: Path, make_tree: TreeFactory) -> None:
    root = make_tree(tmp_path)
    target = tmp_path / "elsewhere"
    target.mkdir()
    os.symlink(target, root / "docs" / "link", target_is_directory=True)

    keys = [
        record.full_path for record in walk_folders(tmp_path, "shop", follow_symlinks=False)
    ]

    assert "shop/docs/link" not in keys
