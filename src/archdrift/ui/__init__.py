"""UI package exports for the CLI router and plain-text rendering."""

from archdrift.ui.cli import CLIError, build_parser, exit_code_for, load_job_file, run_cli
from archdrift.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "exit_code_for",
    "load_job_file",
    "run_cli",
]
