"""Domain records shared across deployctl components."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum


class ModelError(ValueError):
    """Raised when a descriptor mapping is missing fields or malformed."""


@dataclass(frozen=True, slots=True)
class ArtifactRef:
    """Identify one versioned artifact (application jar or runtime archive)."""

    name: str
    version: str
    file_name: str

    def __str__(self) -> str:
        """Return ``name@version`` for log and console output."""
        return f"{self.name}@{self.version}"


class StageKind(str, Enum):
    """How a cached artifact is placed into the production tree."""

    COPY = "copy"
    EXPAND = "expand"


class UpgradeState(str, Enum):
    """Which artifacts differ between the installed and latest descriptors."""

    NO_CHANGE = "no_change"
    APP_CHANGED = "app_changed"
    JDK_CHANGED = "jdk_changed"
    BOTH_CHANGED = "both_changed"

    @classmethod
    def from_flags(cls, app_changed: bool, jdk_changed: bool) -> UpgradeState:
        """Combine independent change flags into a single state."""
        if app_changed and jdk_changed:
            return cls.BOTH_CHANGED
        if app_changed:
            return cls.APP_CHANGED
        if jdk_changed:
            return cls.JDK_CHANGED
        return cls.NO_CHANGE

    @property
    def app_changed(self) -> bool:
        return self in (UpgradeState.APP_CHANGED, UpgradeState.BOTH_CHANGED)

    @property
    def jdk_changed(self) -> bool:
        return self in (UpgradeState.JDK_CHANGED, UpgradeState.BOTH_CHANGED)


# Field name pairs: (attribute, key used by the remote platform).
_REMOTE_FIELDS: tuple[tuple[str, str], ...] = (
    ("remote_url", "url"),
    ("installer_token", "installerToken"),
    ("app_name", "appName"),
    ("app_version", "appVersion"),
    ("app_file_name", "appFileName"),
    ("app_run_port", "appRunPort"),
    ("jdk_name", "jdkName"),
    ("jdk_version", "jdkVersion"),
    ("jdk_file_name", "jdkFileName"),
)


@dataclass(frozen=True, slots=True)
class ManagedUnit:
    """A registered application/runtime pair bound to a single port."""

    remote_url: str
    installer_token: str
    app_name: str
    app_version: str
    app_file_name: str
    app_run_port: int
    jdk_name: str
    jdk_version: str
    jdk_file_name: str

    @property
    def app_artifact(self) -> ArtifactRef:
        return ArtifactRef(self.app_name, self.app_version, self.app_file_name)

    @property
    def jdk_artifact(self) -> ArtifactRef:
        return ArtifactRef(self.jdk_name, self.jdk_version, self.jdk_file_name)

    def with_latest(
        self,
        latest: ManagedUnit,
        *,
        app: bool = True,
        jdk: bool = True,
    ) -> ManagedUnit:
        """Return a copy refreshed from *latest*.

        Only the artifact groups selected by *app* / *jdk* are taken over; the
        installer token always is. The port and remote URL stay those of the
        local registration.
        """
        updated = replace(self, installer_token=latest.installer_token or self.installer_token)
        if app:
            updated = replace(
                updated,
                app_name=latest.app_name,
                app_version=latest.app_version,
                app_file_name=latest.app_file_name,
            )
        if jdk:
            updated = replace(
                updated,
                jdk_name=latest.jdk_name,
                jdk_version=latest.jdk_version,
                jdk_file_name=latest.jdk_file_name,
            )
        return updated

    def to_dict(self) -> dict[str, object]:
        """Return the mapping persisted to ``units.yml``."""
        return {attribute: getattr(self, attribute) for attribute, _ in _REMOTE_FIELDS}

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> ManagedUnit:
        """Build a unit from a persisted (snake_case) mapping."""
        return cls._build(data, [attribute for attribute, _ in _REMOTE_FIELDS])

    @classmethod
    def from_remote(
        cls,
        data: Mapping[str, object],
        *,
        remote_url: str | None = None,
    ) -> ManagedUnit:
        """Build a unit from a remote (camelCase) descriptor.

        *remote_url* fills in ``url`` when the platform omits it.
        """
        payload = dict(data)
        if remote_url is not None and not payload.get("url"):
            payload["url"] = remote_url
        return cls._build(payload, [key for _, key in _REMOTE_FIELDS])

    @classmethod
    def _build(cls, data: Mapping[str, object], keys: list[str]) -> ManagedUnit:
        values: dict[str, object] = {}
        missing: list[str] = []
        for (attribute, _), key in zip(_REMOTE_FIELDS, keys, strict=True):
            raw = data.get(key)
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                missing.append(key)
                continue
            values[attribute] = raw
        if missing:
            raise ModelError(f"Unit descriptor missing fields: {', '.join(missing)}.")

        port_raw = values["app_run_port"]
        if isinstance(port_raw, bool):
            raise ModelError(f"Invalid port value {port_raw!r}.")
        try:
            port = int(str(port_raw))
        except ValueError as exc:
            raise ModelError(f"Invalid port value {port_raw!r}.") from exc
        if not 1 <= port <= 65535:
            raise ModelError(f"Port {port} is outside the valid TCP range.")

        return cls(
            remote_url=str(values["remote_url"]).rstrip("/"),
            installer_token=str(values["installer_token"]),
            app_name=str(values["app_name"]),
            app_version=str(values["app_version"]),
            app_file_name=str(values["app_file_name"]),
            app_run_port=port,
            jdk_name=str(values["jdk_name"]),
            jdk_version=str(values["jdk_version"]),
            jdk_file_name=str(values["jdk_file_name"]),
        )


@dataclass(frozen=True, slots=True)
class UnitOutcome:
    """Result of one lifecycle operation against one managed unit."""

    port: int
    action: str
    ok: bool
    message: str


__all__ = [
    "ArtifactRef",
    "ManagedUnit",
    "ModelError",
    "StageKind",
    "UnitOutcome",
    "UpgradeState",
]
