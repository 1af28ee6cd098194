"""Resume bookkeeping for in-progress artifact downloads.

One record per ``(name, version)`` pairs an artifact with the validator
(``ETag`` or ``Last-Modified``) of the response its partial file came from.
Records are advisory: losing them only costs a fresh download, so an
unreadable ``downloads.yml`` is logged and treated as empty.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .registry import StateRegistry, StateRegistryError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DownloadRecord:
    """Validator captured when a download for ``name``/``version`` started."""

    name: str
    version: str
    validator: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "version": self.version, "validator": self.validator}


@dataclass(slots=True)
class DownloadStateStore:
    """Keyed validator store persisted to ``downloads.yml``."""

    registry: StateRegistry

    def list_records(self) -> list[DownloadRecord]:
        """Return all well-formed records, skipping malformed entries."""
        try:
            raw = self.registry.read_downloads()
        except StateRegistryError as exc:
            LOGGER.warning("Ignoring unreadable download state: %s", exc)
            return []
        entries = raw.get("downloads", [])
        records: list[DownloadRecord] = []
        if not isinstance(entries, Iterable):
            return records
        for item in entries:
            if not isinstance(item, dict):
                continue
            name = str(item.get("name", "") or "").strip()
            version = str(item.get("version", "") or "").strip()
            validator = str(item.get("validator", "") or "")
            if not name or not version or not validator:
                continue
            records.append(DownloadRecord(name=name, version=version, validator=validator))
        return records

    def get(self, name: str, version: str) -> str | None:
        """Return the validator recorded for the key, if any."""
        for record in self.list_records():
            if record.name == name and record.version == version:
                return record.validator
        return None

    def put(self, name: str, version: str, validator: str) -> None:
        """Record *validator* for the key, replacing any previous record."""
        records = [
            record
            for record in self.list_records()
            if not (record.name == name and record.version == version)
        ]
        records.append(DownloadRecord(name=name, version=version, validator=validator))
        self._write(records)

    def remove(self, name: str, version: str) -> None:
        """Delete the record for the key; missing keys are ignored."""
        records = self.list_records()
        filtered = [
            record
            for record in records
            if not (record.name == name and record.version == version)
        ]
        if len(filtered) == len(records):
            return
        self._write(filtered)

    def _write(self, records: list[DownloadRecord]) -> None:
        self.registry.write_downloads(record.to_dict() for record in records)


__all__ = ["DownloadRecord", "DownloadStateStore"]
