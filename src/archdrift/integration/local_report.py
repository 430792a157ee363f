"""Local report artifacts: a Markdown summary rendered with Jinja2, or canonical JSON."""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from archdrift.domain.models import canonical_json
from archdrift.reconciliation.report import PathReport
from archdrift.utils.fs import atomic_write

logger = structlog.get_logger(__name__)

_TEMPLATE_NAME: Final[str] = "report.md.j2"
_SLUG_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")


def _default_template_root() -> Path:
    return Path(__file__).resolve().parents[1] / "templates"


def _md_cell(value: str) -> str:
    return value.replace("|", "\\|").replace("\n", " ")


def report_slug(title: str) -> str:
    slug = _SLUG_RE.sub("-", title).strip("-.")
    return slug or "report"


class MarkdownRenderer:
    """Render a report to ``<output_dir>/<slug>.md``."""

    def __init__(self, output_dir: Path | str, *, template_root: Path | str | None = None) -> None:
        root = Path(template_root) if template_root is not None else _default_template_root()
        if not root.is_dir():
            raise NotADirectoryError(f"template root is not a directory: {root}")
        self._output_dir = Path(output_dir)
        self._environment = Environment(
            loader=FileSystemLoader(str(root)),
            undefined=StrictUndefined,
            autoescape=False,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )
        self._environment.filters["md_cell"] = _md_cell

    def render_text(
        self,
        report: PathReport,
        *,
        unmatched_locators: Sequence[str] = (),
        unmatched_exclusions: Sequence[str] = (),
        generated_at: datetime | None = None,
    ) -> str:
        template = self._environment.get_template(_TEMPLATE_NAME)
        stamp = (generated_at or datetime.now(UTC)).isoformat(timespec="seconds")
        return template.render(
            report=report,
            counts=report.counts(),
            unmatched_locators=list(unmatched_locators),
            unmatched_exclusions=list(unmatched_exclusions),
            generated_at=stamp.replace("+00:00", "Z"),
        )

    def render(
        self,
        report: PathReport,
        *,
        unmatched_locators: Sequence[str] = (),
        unmatched_exclusions: Sequence[str] = (),
    ) -> str:
        target = self._output_dir / f"{report_slug(report.title)}.md"
        atomic_write(
            target,
            self.render_text(
                report,
                unmatched_locators=unmatched_locators,
                unmatched_exclusions=unmatched_exclusions,
            ),
        )
        logger.info("markdown_report_written", path=str(target), rows=report.row_count)
        return str(target)


class JsonRenderer:
    """Render a report to ``<output_dir>/<slug>.json`` as canonical JSON."""

    def __init__(self, output_dir: Path | str) -> None:
        self._output_dir = Path(output_dir)

    def render(
        self,
        report: PathReport,
        *,
        unmatched_locators: Sequence[str] = (),
        unmatched_exclusions: Sequence[str] = (),
    ) -> str:
        payload = report.to_dict()
        payload["unmatched_locators"] = list(unmatched_locators)
        payload["unmatched_exclusions"] = list(unmatched_exclusions)
        target = self._output_dir / f"{report_slug(report.title)}.json"
        atomic_write(target, canonical_json(payload) + "\n")
        logger.info("json_report_written", path=str(target), rows=report.row_count)
        return str(target)


__all__ = ["JsonRenderer", "MarkdownRenderer", "report_slug"]
