"""Markdown and JSON report artifacts."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from archdrift.domain.models import PathNode
from archdrift.integration.local_report import JsonRenderer, MarkdownRenderer, report_slug
from archdrift.reconciliation.report import PathReport, build_report


def _report(title: str = "shop-model") -> PathReport:
    return build_report(
        [
            PathNode(project=title, full_path="shop"),
            PathNode(
                project=title, full_path="shop/src/api", visited=True, note="exist in the model"
            ),
            PathNode(project=title, full_path="shop/a|b", excluded=True, note="pipe | note"),
        ],
        title=title,
    )


@pytest.mark.parametrize(
    ("title", "slug"),
    [
        ("shop-model", "shop-model"),
        ("Shop Model / v2", "Shop-Model-v2"),
        ("..", "report"),
        ("", "report"),
    ],
)
def test_report_slug(title: str, slug: str) -> None:
    assert report_slug(title) == slug


def test_markdown_text_lists_counts_rows_and_unmatched(tmp_path: Path) -> None:
    text = MarkdownRenderer(tmp_path).render_text(
        _report(),
        unmatched_locators=["https://github.com/acme/shop/tree/main/gone"],
        unmatched_exclusions=["build"],
        generated_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
    )

    assert text.startswith("# Architecture drift: shop-model\n")
    assert "Generated 2026-01-02T03:04:05Z." in text
    assert "| Valid | 1 |" in text
    assert "| Invalid | 1 |" in text
    assert "- locator `https://github.com/acme/shop/tree/main/gone`" in text
    assert "- exclusion `build`" in text
    assert "| Full Path | Status | Notes |" in text
    assert "| `shop/src/api` | Valid | exist in the model |" in text
    assert "| `shop/a\\|b` | Excluded | pipe \\| note |" in text
    assert text.endswith("\n")


def test_markdown_omits_unmatched_section_when_everything_matched(tmp_path: Path) -> None:
    text = MarkdownRenderer(tmp_path).render_text(_report())

    assert "matched no folder" not in text


def test_markdown_render_writes_file(tmp_path: Path) -> None:
    location = MarkdownRenderer(tmp_path / "reports").render(_report("Shop Model"))

    path = Path(location)
    assert path == tmp_path / "reports" / "Shop-Model.md"
    assert path.read_text(encoding="utf-8").startswith("# Architecture drift: Shop Model")


def test_missing_template_root_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(NotADirectoryError):
        MarkdownRenderer(tmp_path, template_root=tmp_path / "absent")


def test_json_render_writes_canonical_payload(tmp_path: Path) -> None:
    location = JsonRenderer(tmp_path).render(_report(), unmatched_exclusions=["build"])

    raw = Path(location).read_text(encoding="utf-8")
    payload = json.loads(raw)
    assert raw.endswith("\n")
    assert raw.rstrip("\n") == json.dumps(payload, sort_keys=True, separators=(",", ":"))
    assert payload["header"] == ["Full Path", "Status", "Notes"]
    assert payload["rows"][1] == ["shop/src/api", "Valid", "exist in the model"]
    assert payload["unmatched_locators"] == []
    assert payload["unmatched_exclusions"] == ["build"]
