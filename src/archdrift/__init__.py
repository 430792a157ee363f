"""
archdrift: architecture-model drift reconciliation.

Compares the source locators declared in a C4 architecture model against the folder tree of
a checked-out repository and classifies every folder as Valid, Excluded or Invalid.

Importing the package has no side effects: no config loading and no logging setup.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
