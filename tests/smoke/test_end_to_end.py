"""
archdrift end-to-end smoke test

Purpose
- Run ``python -m archdrift`` as a subprocess twice against the same store and check that
  the second run replaces the first scan, then re-render the stored scan.
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
from pathlib import Path

import pytest
import yaml

_LOCATORS = (
    "https://github.com/acme/shop/tree/main/src/api",
    "https://github.com/acme/shop/tree/main/gone",
)


@pytest.mark.smoke
def test_run_twice_then_report(
    tmp_path: Path, repo_parent: Path, job_payload: dict[str, object]
) -> None:
    config_path = tmp_path / "archdrift.toml"
    config_path.write_text(
        '[observability]\nlog_to_stdout = false\n\n[report]\nbackend = "json"\n',
        encoding="utf-8",
    )
    job_path = tmp_path / "job.yaml"
    job_path.write_text(yaml.safe_dump(job_payload), encoding="utf-8")
    locators_path = tmp_path / "locators.txt"
    locators_path.write_text("\n".join(_LOCATORS) + "\n", encoding="utf-8")
    checkout = repo_parent / "shop"
    run_args = (
        "run",
        str(job_path),
        "--checkout",
        str(checkout),
        "--locators",
        str(locators_path),
        "--config",
        str(config_path),
        "--json",
    )

    first = _archdrift(tmp_path, *run_args)
    assert first.returncode == 0, first.stderr
    first_event = json.loads(first.stdout)
    assert first_event["node_count"] == 6
    assert first_event["unmatched_locators"] == [_LOCATORS[1]]

    shutil.rmtree(checkout / "docs")
    second = _archdrift(tmp_path, *run_args)
    assert second.returncode == 0, second.stderr
    second_event = json.loads(second.stdout)
    assert second_event["node_count"] == 5
    assert second_event["counts"] == {"Valid": 2, "Excluded": 1, "Invalid": 2}

    report = json.loads(Path(second_event["report_location"]).read_text(encoding="utf-8"))
    assert [row[0] for row in report["rows"]] == [
        "shop",
        "shop/src",
        "shop/src/api",
        "shop/src/api/v1",
        "shop/src/util",
    ]

    listing = _archdrift(tmp_path, "projects", "--config", str(config_path), "--json")
    assert listing.returncode == 0, listing.stderr
    assert json.loads(listing.stdout)["projects"][0]["node_count"] == 5

    rerender = _archdrift(
        tmp_path,
        "report",
        "shop-model",
        "--config",
        str(config_path),
        "--report",
        "markdown",
    )
    assert rerender.returncode == 0, rerender.stderr
    assert (tmp_path / "reports" / "shop-model.md").is_file()


def _archdrift(cwd: Path, *args: str) -> subprocess.CompletedProcess[str]:
    project_root = Path(__file__).resolve().parents[2]
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(
        item for item in (str(project_root / "src"), env.get("PYTHONPATH", "")) if item
    )
    env["ARCHDRIFT_STORE_SECRET"] = "smoke-secret"
    return subprocess.run(
        [sys.executable, "-m", "archdrift", *args],
        cwd=cwd,
        env=env,
        text=True,
        capture_output=True,
        check=False,
        timeout=120,
    )
