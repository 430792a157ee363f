"""Report backend selection from the ``[report]`` config section."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path

import requests

from archdrift.config.loader import resolve_secret
from archdrift.config.schema import REPORT_BACKENDS
from archdrift.integration.local_report import JsonRenderer, MarkdownRenderer
from archdrift.integration.sheets import DEFAULT_CLEAR_ROWS, SheetsRenderer
from archdrift.reconciliation.classifier import ReconciliationResult
from archdrift.reconciliation.report import PathReport

RenderFn = Callable[[PathReport, ReconciliationResult], str]


def make_renderer(
    report_config: Mapping[str, object],
    *,
    backend: str | None = None,
    output_dir: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
    session: requests.Session | None = None,
) -> RenderFn | None:
    """Return a render callable for ``backend``, or ``None`` for ``"none"``.

    Sheets credentials are resolved here, so a missing token fails before any job work.
    """

    selected = backend or str(report_config.get("backend", "markdown"))
    if selected not in REPORT_BACKENDS:
        raise ValueError(f"unknown report backend {selected!r}")
    if selected == "none":
        return None

    target_dir = Path(output_dir or str(report_config.get("output_dir", "reports")))
    if selected == "markdown":
        markdown = MarkdownRenderer(target_dir)
        return lambda report, result: markdown.render(
            report,
            unmatched_locators=result.unmatched_locators,
            unmatched_exclusions=result.unmatched_exclusions,
        )
    if selected == "json":
        json_renderer = JsonRenderer(target_dir)
        return lambda report, result: json_renderer.render(
            report,
            unmatched_locators=result.unmatched_locators,
            unmatched_exclusions=result.unmatched_exclusions,
        )

    clear_rows = report_config.get("clear_range_rows", DEFAULT_CLEAR_ROWS)
    sheets = SheetsRenderer(
        str(report_config.get("document_id") or ""),
        resolve_secret({"report": report_config}, "report", "token_env", environ=environ),
        clear_rows=clear_rows if isinstance(clear_rows, int) else DEFAULT_CLEAR_ROWS,
        session=session,
    )
    return lambda report, result: sheets.render(
        report, create_if_missing=result.created_project
    )


__all__ = ["RenderFn", "make_renderer"]
