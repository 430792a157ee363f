"""Utility exports for filesystem and concurrency helpers."""

from archdrift.utils.concurrency import CancellationToken, KeyedLock
from archdrift.utils.fs import atomic_write, safe_delete

__all__ = [
    "CancellationToken",
    "KeyedLock",
    "atomic_write",
    "safe_delete",
]
