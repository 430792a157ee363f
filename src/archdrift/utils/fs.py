"""
Filesystem helpers for report artifacts and scratch checkouts.

Atomic writes go through a temp file in the destination directory and a single replace.
Deletion refuses paths outside the configured root, so a bad repository name can never
remove anything beyond the checkout area.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "safe_delete",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``data`` in one step; readers never see a partial file."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = data if isinstance(data, bytes) else data.encode(encoding)
    fd, scratch = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with open(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(scratch, target)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(scratch)
        raise


def safe_delete(path: PathLike, root: PathLike) -> bool:
    """
    Delete ``path`` only if it sits strictly inside ``root``.

    Returns False when ``path`` does not exist. A symlink is removed itself; its target is
    left alone.
    """

    boundary = Path(root).resolve(strict=True)
    if not boundary.is_dir():
        raise NotADirectoryError(f"{boundary!s} is not a directory")

    target = Path(path)
    is_link = target.is_symlink()
    if not is_link and not target.exists():
        return False

    # Resolve the containing folder only, so a link is judged by where it lives.
    located = target.parent.resolve(strict=True) / target.name if is_link else target.resolve()
    if located == boundary or not located.is_relative_to(boundary):
        raise ValueError(f"refusing to delete path outside root: {target!s}")

    if target.is_dir() and not is_link:
        shutil.rmtree(target)
    else:
        target.unlink()
    return True
