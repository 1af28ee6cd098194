"""Enumerations for CLI exit codes shared by every deployctl command."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    ``VALIDATION`` covers bad flags and unknown ports, ``ENVIRONMENT`` covers
    unreadable state or config, and ``PROVIDER`` is returned whenever at
    least one managed unit failed remotely or on the host.
    """

    OK = 0
    VALIDATION = 2
    ENVIRONMENT = 3
    PROVIDER = 4
