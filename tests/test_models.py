"""Unit descriptor and version precedence tests."""
from __future__ import annotations

import pytest

from deployctl.models import ArtifactRef, ManagedUnit, ModelError, UpgradeState
from deployctl.versions import is_newer

REMOTE_DESCRIPTOR = {
    "url": "http://platform.local/",
    "installerToken": "inst-1",
    "appName": "shop",
    "appVersion": "1.2.0",
    "appFileName": "shop-1.2.0.jar",
    "appRunPort": "8080",
    "jdkName": "temurin",
    "jdkVersion": "17.0.2",
    "jdkFileName": "temurin-17.0.2.zip",
}


def test_from_remote_normalises_fields() -> None:
    """Remote camelCase descriptors become typed units."""
    unit = ManagedUnit.from_remote(REMOTE_DESCRIPTOR)

    assert unit.remote_url == "http://platform.local"
    assert unit.app_run_port == 8080
    assert unit.app_artifact == ArtifactRef("shop", "1.2.0", "shop-1.2.0.jar")
    assert str(unit.jdk_artifact) == "temurin@17.0.2"
    assert ManagedUnit.from_mapping(unit.to_dict()) == unit


def test_from_remote_fills_missing_url() -> None:
    """The caller's base URL is used when the platform omits it."""
    payload = dict(REMOTE_DESCRIPTOR)
    del payload["url"]

    unit = ManagedUnit.from_remote(payload, remote_url="http://other.local")

    assert unit.remote_url == "http://other.local"


def test_missing_fields_are_reported() -> None:
    """All missing keys are listed in the error."""
    payload = dict(REMOTE_DESCRIPTOR)
    del payload["jdkName"]
    payload["appFileName"] = " "

    with pytest.raises(ModelError, match="appFileName, jdkName"):
        ManagedUnit.from_remote(payload)


@pytest.mark.parametrize("port", ["0", "70000", "http", True])
def test_invalid_port_rejected(port: object) -> None:
    """Ports outside 1..65535 or non-numeric ports are rejected."""
    payload = dict(REMOTE_DESCRIPTOR, appRunPort=port)

    with pytest.raises(ModelError):
        ManagedUnit.from_remote(payload)


def test_with_latest_merges_selected_groups() -> None:
    """Only the selected artifact groups are refreshed; the token always is."""
    unit = ManagedUnit.from_remote(REMOTE_DESCRIPTOR)
    latest = ManagedUnit.from_remote(
        dict(
            REMOTE_DESCRIPTOR,
            installerToken="inst-2",
            appVersion="1.3.0",
            appFileName="shop-1.3.0.jar",
            jdkVersion="17.0.1",
            jdkFileName="temurin-17.0.1.zip",
        )
    )

    merged = unit.with_latest(latest, app=True, jdk=False)

    assert merged.installer_token == "inst-2"
    assert merged.app_version == "1.3.0"
    assert merged.app_file_name == "shop-1.3.0.jar"
    assert merged.jdk_version == "17.0.2"
    assert merged.app_run_port == 8080


def test_upgrade_state_from_flags() -> None:
    """Change flags map onto the four upgrade states."""
    assert UpgradeState.from_flags(False, False) is UpgradeState.NO_CHANGE
    assert UpgradeState.from_flags(True, False) is UpgradeState.APP_CHANGED
    assert UpgradeState.from_flags(False, True) is UpgradeState.JDK_CHANGED
    assert UpgradeState.from_flags(True, True) is UpgradeState.BOTH_CHANGED
    assert UpgradeState.BOTH_CHANGED.app_changed
    assert not UpgradeState.APP_CHANGED.jdk_changed


@pytest.mark.parametrize(
    ("candidate", "installed", "expected"),
    [
        ("1.3.0", "1.2.0", True),
        ("1.2.0", "1.3.0", False),
        ("1.10.0", "1.9.0", True),
        ("1.2.0", "1.2.0", False),
        ("8", "8", False),
        ("11", "8", True),
        ("8u202", "8u191", True),
        ("jdk-11.0.2", "jdk-11.0.1", True),
        ("2.0.0rc1", "2.0.0", False),
        ("1.0.0", "1.0.0-SNAPSHOT", True),
        ("1.0.0-SNAPSHOT", "1.0.0", False),
        ("1.0.1-SNAPSHOT", "1.0.0", True),
        ("1.0.0-beta.11", "1.0.0-beta.2", True),
        ("1.0.0-beta", "1.0.0-beta.1", False),
        ("1.8.0_202", "1.8.0_191", True),
    ],
)
def test_is_newer(candidate: str, installed: str, expected: bool) -> None:
    """Version precedence is numeric, not lexical."""
    assert is_newer(candidate, installed) is expected
