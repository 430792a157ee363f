"""Plain-text output helpers for the archdrift CLI."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence


class CLIRenderer:
    """Deterministic plain-text output to one stream."""

    def __init__(self, *, stream: TextIO | None = None, verbose: bool = False) -> None:
        self.verbose = verbose
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    def text(self, line: str) -> None:
        print(line, file=self.stream)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}", file=self.stream)

    def section(self, title: str) -> None:
        print(f"\n{title}", file=self.stream)

    def warning(self, text: str) -> None:
        print(f"  Warning: {text}", file=self.stream)

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            print(f"  {prefix}{entry}", file=self.stream)

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[object]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a left-aligned ASCII table; nothing is printed for zero rows."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[object]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        self.text(f"  {_pad(list(headers))}")
        self.text(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            self.text(f"  {_pad(list(row))}")


def create_renderer(*, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
