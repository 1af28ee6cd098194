"""Persistent state for deployctl (YAML registry files)."""
from __future__ import annotations

from .downloads import DownloadRecord, DownloadStateStore
from .registry import StateRegistry, StateRegistryError
from .units import UnitRegistry, UnitRegistryError

__all__ = [
    "DownloadRecord",
    "DownloadStateStore",
    "StateRegistry",
    "StateRegistryError",
    "UnitRegistry",
    "UnitRegistryError",
]
