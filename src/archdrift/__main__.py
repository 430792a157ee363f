"""Module entrypoint for ``python -m archdrift``."""

from __future__ import annotations

from archdrift.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
