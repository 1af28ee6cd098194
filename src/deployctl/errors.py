"""Typed failures raised by deployctl subsystems.

Each subsystem raises a single exception class that carries a ``kind`` enum
so callers can branch on the failure category without parsing messages. The
orchestrator is the only layer that turns these into operator-facing text.
"""
from __future__ import annotations

from collections.abc import Sequence
from enum import Enum


class DeployError(RuntimeError):
    """Base class for lifecycle failures scoped to a single managed unit."""


class DownloadErrorKind(str, Enum):
    """Categories of artifact download failures."""

    TRANSPORT = "transport"
    NOT_FOUND = "not_found"
    UNEXPECTED_STATUS = "unexpected_status"
    FILESYSTEM = "filesystem"


class DownloadError(DeployError):
    """Raised when an artifact cannot be fetched into the cache."""

    def __init__(
        self,
        kind: DownloadErrorKind,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        """Record the failure *kind* and the optional HTTP status."""
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class StagingErrorKind(str, Enum):
    """Categories of staging failures."""

    MISSING_CACHE = "missing_cache"
    FILESYSTEM = "filesystem"
    BAD_ARCHIVE = "bad_archive"


class StagingError(DeployError):
    """Raised when a cached artifact cannot be placed into production."""

    def __init__(self, kind: StagingErrorKind, message: str) -> None:
        """Record the failure *kind*."""
        super().__init__(message)
        self.kind = kind


class ProcessErrorKind(str, Enum):
    """Categories of process supervision failures."""

    DISCOVERY_FAILED = "discovery_failed"
    KILL_FAILED = "kill_failed"
    LAUNCH_FAILED = "launch_failed"


class ProcessError(DeployError):
    """Raised when discovering, killing, or launching a process fails."""

    def __init__(
        self,
        kind: ProcessErrorKind,
        message: str,
        *,
        pid: int | None = None,
    ) -> None:
        """Record the failure *kind* and the pid involved, when known."""
        super().__init__(message)
        self.kind = kind
        self.pid = pid


class RemoteErrorKind(str, Enum):
    """Categories of remote platform failures."""

    TRANSPORT = "transport"
    VALIDATION = "validation"
    UNEXPECTED_STATUS = "unexpected_status"
    MALFORMED = "malformed"


class RemoteError(DeployError):
    """Raised when the remote distribution platform rejects or fails a call."""

    def __init__(
        self,
        kind: RemoteErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        messages: Sequence[str] | None = None,
    ) -> None:
        """Record the failure *kind* plus any itemised validation messages."""
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.messages = list(messages or [])


__all__ = [
    "DeployError",
    "DownloadError",
    "DownloadErrorKind",
    "ProcessError",
    "ProcessErrorKind",
    "RemoteError",
    "RemoteErrorKind",
    "StagingError",
    "StagingErrorKind",
]
