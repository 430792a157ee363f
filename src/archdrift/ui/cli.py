"""Command-line interface router for archdrift."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml

from archdrift.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
)
from archdrift.constants import JOB_STATUS_CHANNEL
from archdrift.domain.models import JobState, JobStatusEvent
from archdrift.integration.base import AcquisitionError
from archdrift.integration.sheets import authorization_url
from archdrift.jobs import build_runner, make_renderer, new_job_id, open_store
from archdrift.observability import Message, MessageBus, setup_logging, shutdown_logging
from archdrift.persistence import StateDBAuthError
from archdrift.reconciliation import ReconciliationResult, build_report
from archdrift.ui.render import CLIRenderer, create_renderer

DEFAULT_REDIRECT_URI: Final[str] = "http://localhost"
_JOB_FILE_SUFFIXES: Final[frozenset[str]] = frozenset({".json", ".yaml", ".yml"})


@dataclass(slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code.

    Not frozen: ``contextlib`` assigns ``__traceback__`` when it re-raises through
    ``_logging_session``.
    """

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="archdrift",
        description=(
            "archdrift: reconcile a C4 architecture model against a repository's folders.\n\n"
            "Common workflows:\n"
            "  archdrift run job.yaml             Run one reconciliation job\n"
            "  archdrift projects                 List stored projects\n"
            "  archdrift report <project>         Re-render the stored scan of a project\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to archdrift TOML config (default: ./archdrift.toml if present).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run one reconciliation job from a JSON or YAML file",
        description=(
            "Clone the repository, fetch the model, classify every folder and render the\n"
            "drift report.\n\n"
            "Examples:\n"
            "  archdrift run job.yaml\n"
            "  archdrift run job.json --report json --output out/\n"
            "  archdrift run job.yaml --checkout ../my-repo --locators locators.txt\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("job_path", help="Path to the job request (.json, .yaml, .yml)")
    run_parser.add_argument(
        "--report",
        dest="report_backend",
        choices=("sheets", "markdown", "json", "none"),
        default=None,
        help="Report backend (default: report.backend from config)",
    )
    run_parser.add_argument("--output", default=None, help="Output folder for local reports")
    run_parser.add_argument(
        "--checkout",
        default=None,
        help="Use an existing local checkout instead of cloning (never deleted)",
    )
    run_parser.add_argument(
        "--locators",
        dest="locators_path",
        default=None,
        help="Newline-separated locator file used instead of the Structurizr workspace",
    )
    run_parser.add_argument("--json", action="store_true", help="Emit the status event as JSON")
    run_parser.set_defaults(handler=_cmd_run)

    # report --------------------------------------------------------------
    report_parser = subparsers.add_parser(
        "report",
        parents=[common],
        help="Re-render the stored scan of a project",
    )
    report_parser.add_argument("project", help="Project name")
    report_parser.add_argument(
        "--report",
        dest="report_backend",
        choices=("sheets", "markdown", "json"),
        default=None,
        help="Report backend (default: report.backend from config)",
    )
    report_parser.add_argument("--output", default=None, help="Output folder for local reports")
    report_parser.set_defaults(handler=_cmd_report)

    # projects ------------------------------------------------------------
    projects_parser = subparsers.add_parser(
        "projects",
        parents=[common],
        help="List stored projects with node counts",
    )
    projects_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    projects_parser.set_defaults(handler=_cmd_projects)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the redacted effective config",
    )
    config_parser.set_defaults(handler=_cmd_config)

    # sheet-url -----------------------------------------------------------
    sheet_url_parser = subparsers.add_parser(
        "sheet-url",
        parents=[common],
        help="Print the Google consent URL for a Sheets token",
    )
    sheet_url_parser.add_argument("--client-id", required=True, help="OAuth client id")
    sheet_url_parser.add_argument(
        "--redirect-uri",
        default=DEFAULT_REDIRECT_URI,
        help=f"OAuth redirect URI (default: {DEFAULT_REDIRECT_URI})",
    )
    sheet_url_parser.set_defaults(handler=_cmd_sheet_url)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return the process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {"report.backend": args.report_backend}
    if args.output is not None:
        overrides["report.output_dir"] = _absolute(args.output)
    config = _load_effective_config(args, overrides)
    payload = load_job_file(Path(args.job_path))
    job_id = new_job_id()

    with _logging_session(config, run_id=job_id):
        bus = MessageBus()
        statuses: list[Mapping[str, object]] = []

        def collect(message: Message) -> None:
            statuses.append(message.payload)

        bus.subscribe(JOB_STATUS_CHANNEL, collect)
        try:
            store = open_store(config)
        except StateDBAuthError as exc:
            raise CLIError(str(exc), exit_code=2) from exc
        runner = build_runner(
            config,
            store=store,
            bus=bus,
            locators_file=_absolute(args.locators_path) if args.locators_path else None,
        )
        try:
            outcome = asyncio.run(
                runner.submit(
                    payload,
                    job_id=job_id,
                    local_checkout=_absolute(args.checkout) if args.checkout else None,
                )
            )
        finally:
            runner.close()

    event = outcome.event
    if args.json:
        _emit_json(event.to_dict())
    else:
        _render_event(create_renderer(verbose=args.verbose), event)
    return exit_code_for(event)


def _cmd_report(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {"report.backend": args.report_backend}
    if args.output is not None:
        overrides["report.output_dir"] = _absolute(args.output)
    config = _load_effective_config(args, overrides)

    with _logging_session(config, run_id=new_job_id()):
        try:
            store = open_store(config)
        except StateDBAuthError as exc:
            raise CLIError(str(exc), exit_code=2) from exc
        if not store.project_exists(args.project):
            raise CLIError(f"unknown project: {args.project}", exit_code=1)
        nodes = tuple(store.scan(args.project))
        render = make_renderer(config["report"])
        if render is None:
            raise CLIError("report.backend is 'none'; choose a backend with --report", 2)
        result = ReconciliationResult(
            project=args.project, nodes=nodes, created_project=False, wiped_nodes=0
        )
        try:
            location = render(build_report(nodes, title=args.project), result)
        except AcquisitionError as exc:
            raise CLIError(str(exc), exit_code=3) from exc

    renderer = create_renderer(verbose=args.verbose)
    renderer.kv("Project", args.project)
    renderer.kv("Rows", len(nodes))
    renderer.kv("Report", location)
    return 0


def _cmd_projects(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    try:
        summaries = open_store(config).list_projects()
    except StateDBAuthError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    if args.json:
        _emit_json(
            {
                "command": "projects",
                "projects": [
                    {
                        "name": item.name,
                        "created_by": item.created_by,
                        "created_at": item.created_at,
                        "node_count": item.node_count,
                    }
                    for item in summaries
                ],
            }
        )
        return 0

    renderer = create_renderer(verbose=args.verbose)
    if not summaries:
        renderer.text(f"No projects stored in {config['store']['endpoint']}")
        return 0
    renderer.table(
        ("Project", "Nodes", "Created by", "Created at"),
        [(item.name, item.node_count, item.created_by, item.created_at) for item in summaries],
    )
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    print(json.dumps(effective_config(config), indent=2, sort_keys=True, ensure_ascii=False))
    return 0


def _cmd_sheet_url(args: argparse.Namespace) -> int:
    print(authorization_url(args.client_id, args.redirect_uri))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def load_job_file(path: Path) -> dict[str, Any]:
    """Read a job request from JSON or YAML. Validation happens in ``JobRequest``."""

    if path.suffix.lower() not in _JOB_FILE_SUFFIXES:
        raise CLIError(f"job file must be .json, .yaml or .yml: {path}", exit_code=2)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"unable to read job file {path}: {exc}", exit_code=2) from exc

    try:
        if path.suffix.lower() == ".json":
            parsed = json.loads(text)
        else:
            parsed = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise CLIError(f"invalid job file {path}: {exc}", exit_code=2) from exc

    if not isinstance(parsed, dict):
        raise CLIError(f"job file root must be an object: {path}", exit_code=2)
    return parsed


def exit_code_for(event: JobStatusEvent) -> int:
    if event.status is JobState.SUCCEEDED:
        return 0
    if event.error_kind in _acquisition_error_kinds():
        return 3
    return 1


def _acquisition_error_kinds() -> frozenset[str]:
    kinds: set[str] = set()
    pending: list[type[BaseException]] = [AcquisitionError]
    while pending:
        current = pending.pop()
        kinds.add(current.__name__)
        pending.extend(current.__subclasses__())
    return frozenset(kinds)


def _render_event(renderer: CLIRenderer, event: JobStatusEvent) -> None:
    renderer.kv("Job", event.job_id)
    renderer.kv("Project", event.project)
    renderer.kv("Status", event.status.value)
    if event.status is not JobState.SUCCEEDED:
        renderer.kv("Error", f"{event.error_kind}: {event.error or '-'}")
        return
    renderer.kv("Folders", event.node_count)
    if event.counts:
        renderer.table(("Status", "Folders"), sorted(event.counts.items()))
    if event.report_location:
        renderer.kv("Report", event.report_location)
    unmatched = [f"locator {item}" for item in event.unmatched_locators]
    unmatched += [f"exclusion {item}" for item in event.unmatched_exclusions]
    if unmatched:
        renderer.section("Matched no folder:")
        renderer.items(unmatched)


@contextmanager
def _logging_session(config: Mapping[str, Any], *, run_id: str) -> Iterator[None]:
    handle = setup_logging(config["observability"], run_id=run_id)
    try:
        yield
    finally:
        shutdown_logging(handle)


def _load_effective_config(
    args: argparse.Namespace,
    overrides: Mapping[str, object] | None = None,
) -> dict[str, Any]:
    try:
        return load_config(args.config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _absolute(raw: str) -> str:
    return Path(raw).expanduser().resolve().as_posix()


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


__all__ = ["CLIError", "build_parser", "exit_code_for", "load_job_file", "run_cli"]
