"""deployctl: a host agent that deploys, upgrades and stops Java services by port."""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# Kept in sync with ``pyproject.toml`` (Hatch reads the version from there).
__version__ = "0.1.0a0"


def get_version() -> str:
    """Return the installed deployctl version string."""
    return __version__
