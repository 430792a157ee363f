"""
Folder tree walker.

Yields every directory under ``root / relative`` in pre-order (a folder before any of its
children, siblings in name order), starting with the walk root itself. Files never produce
records. The walk uses an explicit stack and remembers the ``(st_dev, st_ino)`` of every
directory it entered, so symlinked directories are followed at most once and cycles end.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import structlog

from archdrift.constants import DEFAULT_IGNORED_DIRS, STORE_SEPARATOR

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class FolderRecord:
    name: str
    full_path: str
    depth: int


def walk_folders(
    root: str | os.PathLike[str],
    relative: str,
    *,
    ignore: tuple[str, ...] = DEFAULT_IGNORED_DIRS,
    follow_symlinks: bool = True,
    separator: str = STORE_SEPARATOR,
) -> Iterator[FolderRecord]:
    """Walk ``root / relative`` and yield one record per distinct directory.

    An empty ``relative`` yields nothing: the filesystem root sentinel never becomes a node.
    Raises ``NotADirectoryError`` when the walk root is missing or not a directory.
    """

    relative = relative.strip("/\\")
    if not relative:
        logger.debug("walk_skipped_empty_root", root=str(root))
        return

    start = Path(root) / relative
    if not start.is_dir():
        raise NotADirectoryError(f"walk root is not a directory: {start}")

    key_root = relative.replace("\\", "/").replace("/", separator)
    seen: set[tuple[int, int]] = set()
    stack: list[tuple[Path, str, str, int]] = [(start, start.name, key_root, 0)]

    while stack:
        path, name, key, depth = stack.pop()
        try:
            stat = path.stat()
        except OSError as exc:
            logger.warning("walk_stat_failed", path=str(path), error=str(exc))
            continue
        identity = (stat.st_dev, stat.st_ino)
        if identity in seen:
            logger.info("walk_cycle_skipped", path=str(path), full_path=key)
            continue
        seen.add(identity)

        yield FolderRecord(name=name, full_path=key, depth=depth)

        children: list[tuple[Path, str, str, int]] = []
        try:
            with os.scandir(path) as entries:
                for entry in entries:
                    if not entry.name or entry.name in ignore:
                        continue
                    try:
                        if not entry.is_dir(follow_symlinks=follow_symlinks):
                            continue
                    except OSError:
                        continue
                    children.append(
                        (Path(entry.path), entry.name, f"{key}{separator}{entry.name}", depth + 1)
                    )
        except OSError as exc:
            logger.warning("walk_listdir_failed", path=str(path), error=str(exc))
            continue

        # Reverse so the smallest name is popped first.
        children.sort(key=lambda item: item[1], reverse=True)
        stack.extend(children)


__all__ = ["FolderRecord", "walk_folders"]
