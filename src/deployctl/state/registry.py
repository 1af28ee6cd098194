"""YAML-backed storage for deployctl's persistent state.

Everything the agent remembers between runs lives in one directory
(``<state_dir>/registry``): ``units.yml`` holds the managed units and
``downloads.yml`` holds resume records for partial downloads. Writes go
through a temporary sibling file and ``os.replace`` so readers only ever see
a complete document.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage deployctl state. Install with `pip install deployctl`."
    ) from exc


UNITS_FILE = "units.yml"
DOWNLOADS_FILE = "downloads.yml"
FILE_MODE = 0o640


class StateRegistryError(RuntimeError):
    """Raised when a registry file cannot be read, parsed or written."""


@dataclass(frozen=True)
class StateRegistry:
    """Read and atomically replace YAML documents under ``root``."""

    root: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StateRegistryError(
                f"Cannot create registry directory {self.root}: {exc}"
            ) from exc

    def path_for(self, name: str) -> Path:
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Return the parsed document, or a copy of *default* if absent or empty."""
        path = self.path_for(name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return deepcopy(default)
        except OSError as exc:
            raise StateRegistryError(f"Failed to read registry file {path}: {exc}") from exc
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        return deepcopy(default) if data is None else data

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Replace *name* with *payload* in one rename."""
        self.ensure_root()
        path = self.path_for(name)
        staged: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.root,
                prefix=f".{name}.",
                delete=False,
            ) as handle:
                staged = Path(handle.name)
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.chmod(staged, FILE_MODE)
            os.replace(staged, path)
            staged = None
        except OSError as exc:
            raise StateRegistryError(f"Failed to write registry file {path}: {exc}") from exc
        finally:
            if staged is not None:
                staged.unlink(missing_ok=True)

    # Named documents ------------------------------------------------------
    def _document(self, name: str, key: str) -> Mapping[str, object]:
        value = self.read(name, default={key: []})
        if not isinstance(value, Mapping):
            raise StateRegistryError(f"Registry file {self.path_for(name)} must contain a mapping.")
        return value

    def read_units(self) -> Mapping[str, object]:
        """Return ``units.yml``; a non-mapping document is an error."""
        return self._document(UNITS_FILE, "units")

    def write_units(self, units: Iterable[object]) -> None:
        self.write(UNITS_FILE, {"units": list(units)})

    def read_downloads(self) -> Mapping[str, object]:
        """Return ``downloads.yml``; a non-mapping document is an error."""
        return self._document(DOWNLOADS_FILE, "downloads")

    def write_downloads(self, downloads: Iterable[object]) -> None:
        self.write(DOWNLOADS_FILE, {"downloads": list(downloads)})


__all__ = ["DOWNLOADS_FILE", "StateRegistry", "StateRegistryError", "UNITS_FILE"]
