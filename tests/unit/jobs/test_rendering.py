"""Report backend selection."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from archdrift.domain.models import PathNode
from archdrift.integration.base import AuthorizationError
from archdrift.jobs.rendering import make_renderer
from archdrift.reconciliation.classifier import ReconciliationResult
from archdrift.reconciliation.report import build_report

_NODES = (
    PathNode(project="shop-model", full_path="shop"),
    PathNode(project="shop-model", full_path="shop/src", visited=True, note="exist in the model"),
)
_RESULT = ReconciliationResult(
    project="shop-model",
    nodes=_NODES,
    created_project=True,
    wiped_nodes=0,
    unmatched_exclusions=("build",),
)


def test_none_backend_disables_rendering() -> None:
    assert make_renderer({"backend": "none"}) is None


def test_unknown_backend_is_rejected() -> None:
    with pytest.raises(ValueError, match="unknown report backend"):
        make_renderer({"backend": "markdown"}, backend="pdf")


def test_markdown_backend_writes_into_output_dir(tmp_path: Path) -> None:
    render = make_renderer({"backend": "markdown", "output_dir": str(tmp_path / "reports")})
    assert render is not None

    location = render(build_report(_NODES, title="shop-model"), _RESULT)

    text = Path(location).read_text(encoding="utf-8")
    assert Path(location).parent == tmp_path / "reports"
    assert "- exclusion `build`" in text


def test_backend_and_output_dir_arguments_override_config(tmp_path: Path) -> None:
    render = make_renderer(
        {"backend": "markdown", "output_dir": str(tmp_path / "ignored")},
        backend="json",
        output_dir=tmp_path / "out",
    )
    assert render is not None

    location = render(build_report(_NODES, title="shop-model"), _RESULT)

    assert location == str(tmp_path / "out" / "shop-model.json")
    assert json.loads(Path(location).read_text(encoding="utf-8"))["unmatched_exclusions"] == [
        "build"
    ]


def test_sheets_backend_requires_token_up_front() -> None:
    config = {"backend": "sheets", "document_id": "doc-1", "token_env": "SHEETS_TOKEN"}

    with pytest.raises(AuthorizationError):
        make_renderer(config, environ={})

    assert make_renderer(config, environ={"SHEETS_TOKEN": "tok"}) is not None
