"""Managed unit descriptors keyed by application port."""
from __future__ import annotations

from dataclasses import dataclass

from ..models import ManagedUnit, ModelError
from .registry import UNITS_FILE, StateRegistry, StateRegistryError


class UnitRegistryError(RuntimeError):
    """Raised when a unit cannot be added, updated, or removed."""


@dataclass(slots=True)
class UnitRegistry:
    """Manage the unit descriptors stored under ``units.yml``.

    The port is the identity of a unit: at most one descriptor per
    ``app_run_port``. Malformed files raise :class:`StateRegistryError`, which
    callers treat as fatal because silently dropping a unit would orphan its
    running process.
    """

    registry: StateRegistry

    # ------------------------------------------------------------------
    def list_units(self) -> list[ManagedUnit]:
        """Return every registered unit sorted by port."""
        raw = self.registry.read_units()
        entries = raw.get("units", [])
        if not isinstance(entries, list):
            raise StateRegistryError(
                f"Registry file {self.registry.path_for(UNITS_FILE)} has a malformed 'units' list."
            )
        units: list[ManagedUnit] = []
        for index, item in enumerate(entries):
            if not isinstance(item, dict):
                raise StateRegistryError(f"Unit entry #{index} is not a mapping.")
            try:
                units.append(ManagedUnit.from_mapping(item))
            except ModelError as exc:
                raise StateRegistryError(f"Unit entry #{index} is invalid: {exc}") from exc
        units.sort(key=lambda unit: unit.app_run_port)
        return units

    def get(self, port: int) -> ManagedUnit | None:
        """Return the unit bound to *port*, if registered."""
        for unit in self.list_units():
            if unit.app_run_port == port:
                return unit
        return None

    def add(self, unit: ManagedUnit) -> None:
        """Persist a newly registered *unit*."""
        units = self.list_units()
        if any(existing.app_run_port == unit.app_run_port for existing in units):
            raise UnitRegistryError(f"Port {unit.app_run_port} is already registered.")
        units.append(unit)
        self._write(units)

    def update(self, unit: ManagedUnit) -> None:
        """Replace the descriptor registered on ``unit.app_run_port``."""
        units = self.list_units()
        replaced = False
        for index, existing in enumerate(units):
            if existing.app_run_port == unit.app_run_port:
                units[index] = unit
                replaced = True
        if not replaced:
            raise UnitRegistryError(f"No unit registered on port {unit.app_run_port}.")
        self._write(units)

    def remove(self, port: int) -> None:
        """Remove the unit registered on *port*."""
        units = self.list_units()
        filtered = [unit for unit in units if unit.app_run_port != port]
        if len(filtered) == len(units):
            raise UnitRegistryError(f"No unit registered on port {port}.")
        self._write(filtered)

    # Internal helpers -------------------------------------------------
    def _write(self, units: list[ManagedUnit]) -> None:
        ordered = sorted(units, key=lambda unit: unit.app_run_port)
        self.registry.write_units(unit.to_dict() for unit in ordered)


__all__ = ["UnitRegistry", "UnitRegistryError"]
