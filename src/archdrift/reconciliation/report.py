"""
Report generator: scanned nodes to a 3-column table plus a formatting directive.

Rows keep the scan order. The directive tells a renderer how to color each status, how to
shade the header, and which filtered views to offer; filters cover only the Status and Notes
columns.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Final

from archdrift.constants import REPORT_HEADER
from archdrift.domain.models import PathNode, PathStatus
from archdrift.reconciliation.classifier import resolve_status

RGB = tuple[float, float, float]

STATUS_COLORS: Final[dict[PathStatus, RGB]] = {
    PathStatus.VALID: (0.4, 1.0, 0.4),
    PathStatus.EXCLUDED: (0.5, 0.5, 0.5),
    PathStatus.INVALID: (1.0, 0.4, 0.4),
}
HEADER_SHADE: Final[RGB] = (0.9, 0.9, 0.9)

# Zero-based, end-exclusive column span of the Status and Notes columns.
DATA_COLUMN_SPAN: Final[tuple[int, int]] = (1, 3)
STATUS_COLUMN: Final[int] = 1


@dataclass(frozen=True, slots=True)
class FilterView:
    title: str
    status: PathStatus
    column_span: tuple[int, int] = DATA_COLUMN_SPAN


@dataclass(frozen=True, slots=True)
class FormattingDirective:
    status_colors: dict[PathStatus, RGB] = field(default_factory=lambda: dict(STATUS_COLORS))
    header_shade: RGB = HEADER_SHADE
    status_column: int = STATUS_COLUMN
    filter_views: tuple[FilterView, ...] = ()

    @classmethod
    def for_sheet(cls, sheet_title: str) -> FormattingDirective:
        views = tuple(
            FilterView(title=f"{status.value} Paths {sheet_title}", status=status)
            for status in (PathStatus.EXCLUDED, PathStatus.INVALID, PathStatus.VALID)
        )
        return cls(filter_views=views)


@dataclass(frozen=True, slots=True)
class ReportRow:
    full_path: str
    status: PathStatus
    note: str

    def as_tuple(self) -> tuple[str, str, str]:
        return (self.full_path, self.status.value, self.note)


@dataclass(frozen=True, slots=True)
class PathReport:
    title: str
    rows: tuple[ReportRow, ...]
    formatting: FormattingDirective
    header: tuple[str, str, str] = REPORT_HEADER

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def counts(self) -> dict[str, int]:
        tally = Counter(row.status for row in self.rows)
        return {status.value: tally.get(status, 0) for status in PathStatus}

    def table(self) -> list[list[str]]:
        """Row-major values, header first."""

        return [list(self.header), *(list(row.as_tuple()) for row in self.rows)]

    def columns(self) -> list[list[str]]:
        """Column-major values, each column led by its header cell."""

        table = self.table()
        return [[line[index] for line in table] for index in range(len(self.header))]

    def rows_with_status(self, status: PathStatus) -> list[ReportRow]:
        return [row for row in self.rows if row.status is status]

    def to_dict(self) -> dict[str, object]:
        return {
            "title": self.title,
            "header": list(self.header),
            "rows": [list(row.as_tuple()) for row in self.rows],
            "counts": self.counts(),
            "formatting": {
                "status_colors": {
                    status.value: list(rgb) for status, rgb in self.formatting.status_colors.items()
                },
                "header_shade": list(self.formatting.header_shade),
                "status_column": self.formatting.status_column,
                "filter_views": [
                    {
                        "title": view.title,
                        "status": view.status.value,
                        "column_span": list(view.column_span),
                    }
                    for view in self.formatting.filter_views
                ],
            },
        }


def build_report(nodes: Iterable[PathNode], *, title: str) -> PathReport:
    rows = tuple(
        ReportRow(
            full_path=node.full_path,
            status=resolve_status(node.visited, node.excluded),
            note=node.note,
        )
        for node in nodes
    )
    return PathReport(title=title, rows=rows, formatting=FormattingDirective.for_sheet(title))


__all__ = [
    "DATA_COLUMN_SPAN",
    "FilterView",
    "FormattingDirective",
    "HEADER_SHADE",
    "PathReport",
    "ReportRow",
    "STATUS_COLORS",
    "build_report",
]
