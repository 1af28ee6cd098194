"""Host facts reported to the remote platform and used for artifact selection."""
from __future__ import annotations

import ipaddress
import logging
import platform
import socket
import uuid
from dataclasses import dataclass

import psutil

from .errors import DeployError

LOGGER = logging.getLogger(__name__)

_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "armv8": "aarch64",
    "i386": "x86",
    "i686": "x86",
}

_TARGET_OS = {
    "windows": "windows",
    "linux": "linux",
    "darwin": "macos",
}


class HostInfoError(DeployError):
    """Raised when the host has no usable network interface."""


@dataclass(frozen=True, slots=True)
class OsInfo:
    """Operating system facts in the form the remote platform expects."""

    os_type: str
    version: str
    target_os: str
    target_arch: str


@dataclass(frozen=True, slots=True)
class InterfaceAddress:
    """IPv4 address and uppercase MAC address of the primary interface."""

    ip_address: str
    mac_address: str


def get_os_info() -> OsInfo:
    """Return OS type/version plus normalised target OS and architecture."""
    system = platform.system()
    machine = platform.machine().lower()
    return OsInfo(
        os_type=system,
        version=platform.release(),
        target_os=_TARGET_OS.get(system.lower(), system.lower()),
        target_arch=_ARCH_ALIASES.get(machine, machine),
    )


def get_interface_address() -> InterfaceAddress:
    """Return the first non-loopback IPv4 interface that is up.

    The MAC address comes from the same interface; when psutil cannot report
    one, the node id from :func:`uuid.getnode` is used instead.
    """
    stats = psutil.net_if_stats()
    for name, addresses in psutil.net_if_addrs().items():
        interface_stats = stats.get(name)
        if interface_stats is not None and not interface_stats.isup:
            continue
        ipv4 = next(
            (
                entry.address
                for entry in addresses
                if entry.family == socket.AF_INET
                and not ipaddress.ip_address(entry.address).is_loopback
            ),
            None,
        )
        if ipv4 is None:
            continue
        mac = next(
            (entry.address for entry in addresses if entry.family == psutil.AF_LINK),
            None,
        )
        LOGGER.debug("Selected network interface %s (%s)", name, ipv4)
        return InterfaceAddress(
            ip_address=ipv4,
            mac_address=_normalise_mac(mac) if mac else _node_mac(),
        )
    raise HostInfoError("No network interface with a non-loopback IPv4 address is up.")


def _normalise_mac(value: str) -> str:
    return value.replace("-", ":").upper()


def _node_mac() -> str:
    node = uuid.getnode()
    return ":".join(f"{(node >> shift) & 0xFF:02X}" for shift in range(40, -1, -8))


__all__ = [
    "HostInfoError",
    "InterfaceAddress",
    "OsInfo",
    "get_interface_address",
    "get_os_info",
]
