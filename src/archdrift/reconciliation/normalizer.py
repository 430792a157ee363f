"""
Map architecture-model locators and exclusion entries onto store path keys.

A locator such as ``https://github.com/acme/shop/tree/main/src/api`` becomes ``shop/src/api``:
the scheme, host, organization and ``tree/<branch>/`` segments are removed as plain substring
edits (first occurrence each) and ``/`` is rewritten to the store separator. Locators with any
other shape pass through with only the matching substrings removed; this is a textual rewrite,
not a URL parse.
"""

from __future__ import annotations

from typing import Final

from archdrift.constants import DEFAULT_GIT_HOST, STORE_SEPARATOR

_SCHEME: Final[str] = "https://"


def normalize_locator(
    locator: str,
    *,
    organization: str,
    branch: str,
    host: str = DEFAULT_GIT_HOST,
    separator: str = STORE_SEPARATOR,
) -> str:
    key = locator.replace(_SCHEME, "", 1)
    key = key.replace(f"{host}/", "", 1)
    key = key.replace(f"{organization}/", "", 1)
    key = key.replace(f"tree/{branch}/", "", 1)
    return key.replace("/", separator)


def normalize_exclusion(path: str, *, separator: str = STORE_SEPARATOR) -> str:
    """Rewrite separators only. Exclusion entries are already repository paths."""

    return path.replace("\\", "/").replace("/", separator)


def scope_to_repository(key: str, repository: str, *, separator: str = STORE_SEPARATOR) -> str:
    """Prefix the repository-relative ``key`` with the repository folder.

    Node keys include the checkout folder name, so ``src/util`` in repository ``shop`` is
    stored as ``shop/src/util``. A key is never taken as already scoped: ``shop`` names the
    folder ``shop/shop``. Empty and ``.`` segments are dropped, so ``.`` names the root.
    """

    parts = [part for part in key.split(separator) if part not in ("", ".")]
    return separator.join((repository, *parts))


__all__ = ["normalize_exclusion", "normalize_locator", "scope_to_repository"]
