"""agentcheck package bootstrap.

Lightweight metadata shared by the CLI, the baseline report write and the
packaging machinery.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# Hatch reads the package version from here.
__version__ = "0.4.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
