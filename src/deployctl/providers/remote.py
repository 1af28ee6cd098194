"""Client for the remote distribution platform's installer endpoints."""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import replace

import httpx

from ..errors import RemoteError, RemoteErrorKind
from ..hostinfo import InterfaceAddress, OsInfo, get_interface_address, get_os_info
from ..models import ManagedUnit, ModelError

LOGGER = logging.getLogger(__name__)


class RemotePlatformClient:
    """Register, refresh, and deregister managed units with the platform.

    Every request identifies this host by its server token (the primary MAC
    address) together with its IP and OS facts.
    """

    def __init__(
        self,
        client: httpx.Client,
        *,
        os_info: Callable[[], OsInfo] = get_os_info,
        interface: Callable[[], InterfaceAddress] = get_interface_address,
    ) -> None:
        """Wrap *client*; host fact providers are injectable for tests."""
        self.client = client
        self._os_info = os_info
        self._interface = interface

    # ------------------------------------------------------------------
    def register(self, remote_url: str, registration_token: str, port: int) -> ManagedUnit:
        """Bind a new unit on *port* to the project behind *registration_token*."""
        base = remote_url.rstrip("/")
        payload = self._host_payload(registration_token)
        payload["appRunPort"] = port
        response = self._send("POST", f"{base}/installers", json=payload)
        unit = self._parse_unit(response, base)
        if unit.app_run_port != port:
            # The platform echoes the port; the operator's choice is authoritative.
            LOGGER.warning(
                "Platform returned port %s for registration on %s", unit.app_run_port, port
            )
            unit = replace(unit, app_run_port=port)
        return unit

    def request_latest(self, unit: ManagedUnit) -> ManagedUnit:
        """Return the latest descriptor the platform holds for *unit*.

        The result is bound to the same port and remote URL as *unit*.
        """
        payload = self._host_payload(unit.installer_token)
        response = self._send("PUT", f"{unit.remote_url}/installers", json=payload)
        latest = self._parse_unit(response, unit.remote_url, port=unit.app_run_port)
        return replace(latest, remote_url=unit.remote_url, app_run_port=unit.app_run_port)

    def deregister(self, unit: ManagedUnit) -> None:
        """Tell the platform that *unit* is no longer installed here."""
        self._send("DELETE", f"{unit.remote_url}/installers/{unit.installer_token}")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _host_payload(self, token: str) -> dict[str, object]:
        interface = self._interface()
        os_info = self._os_info()
        return {
            "token": token,
            "serverToken": interface.mac_address,
            "ip": interface.ip_address,
            "osType": os_info.os_type,
            "osVersion": os_info.version,
            "arch": os_info.target_arch,
        }

    def _send(self, method: str, url: str, **kwargs: object) -> httpx.Response:
        try:
            response = self.client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except httpx.RequestError as exc:
            raise RemoteError(
                RemoteErrorKind.TRANSPORT,
                f"{method} {url} failed: {exc}",
            ) from exc

        if response.is_success:
            return response
        if response.status_code in (400, 422):
            messages = _validation_messages(response)
            raise RemoteError(
                RemoteErrorKind.VALIDATION,
                "; ".join(messages) or f"{method} {url} was rejected.",
                status_code=response.status_code,
                messages=messages,
            )
        raise RemoteError(
            RemoteErrorKind.UNEXPECTED_STATUS,
            f"{method} {url} returned HTTP {response.status_code}.",
            status_code=response.status_code,
        )

    @staticmethod
    def _parse_unit(
        response: httpx.Response,
        remote_url: str,
        *,
        port: int | None = None,
    ) -> ManagedUnit:
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteError(
                RemoteErrorKind.MALFORMED,
                f"Platform returned a non-JSON body (HTTP {response.status_code}).",
            ) from exc
        if not isinstance(data, Mapping):
            raise RemoteError(RemoteErrorKind.MALFORMED, "Platform returned a non-object body.")
        payload = dict(data)
        if port is not None and payload.get("appRunPort") in (None, ""):
            payload["appRunPort"] = port
        try:
            return ManagedUnit.from_remote(payload, remote_url=remote_url)
        except ModelError as exc:
            raise RemoteError(RemoteErrorKind.MALFORMED, f"Invalid unit descriptor: {exc}") from exc


def _validation_messages(response: httpx.Response) -> list[str]:
    """Flatten ``{"errors": {field: [msg, ...]}}`` style bodies into lines."""
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return [text] if text else []
    if not isinstance(body, Mapping):
        return [str(body)]
    errors = body.get("errors")
    messages: list[str] = []
    if isinstance(errors, Mapping):
        for field, value in errors.items():
            items = value if isinstance(value, list) else [value]
            messages.extend(f"{field}: {item}" for item in items)
    elif isinstance(errors, list):
        messages.extend(str(item) for item in errors)
    elif body.get("message"):
        messages.append(str(body["message"]))
    return messages


__all__ = ["RemotePlatformClient"]
