"""Version precedence used to decide whether an artifact changed."""
from __future__ import annotations

import re

from packaging.version import InvalidVersion, Version

_CORE = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:[._u](\d+))?(.*)", re.DOTALL)

VersionKey = tuple[tuple[int, int, int, int], int, tuple[tuple[int, int, str], ...]]


def is_newer(candidate: str, installed: str) -> bool:
    """Return True when *candidate* strictly supersedes *installed*.

    PEP 440 strings compare with :mod:`packaging` precedence. Anything else
    (``1.0.0-SNAPSHOT``, ``8u202``, ``jdk-11``) falls back to semantic
    versioning: a numeric ``major.minor.patch`` core, an optional Java style
    update number (``8u202``, ``1.8.0_202``), and a ``-`` prerelease tag that
    ranks below the bare release. Identical strings are never newer.
    """
    candidate = candidate.strip()
    installed = installed.strip()
    if candidate == installed:
        return False
    try:
        return Version(candidate) > Version(installed)
    except InvalidVersion:
        pass
    return _semver_key(candidate) > _semver_key(installed)


def _semver_key(value: str) -> VersionKey:
    match = _CORE.search(value)
    if match is None:
        return (0, 0, 0, 0), 0, _prerelease(value)
    major, minor, patch, update, rest = match.groups()
    core = (int(major), int(minor or 0), int(patch or 0), int(update or 0))
    tag = rest.split("+", 1)[0].lstrip("-.")
    if not tag:
        return core, 1, ()
    return core, 0, _prerelease(tag)


def _prerelease(tag: str) -> tuple[tuple[int, int, str], ...]:
    """Order identifiers the semver way: numbers numerically, below words."""
    identifiers: list[tuple[int, int, str]] = []
    for part in re.split(r"[.\-]", tag):
        if not part:
            continue
        if part.isdigit():
            identifiers.append((0, int(part), ""))
        else:
            identifiers.append((1, 0, part))
    return tuple(identifiers)


__all__ = ["is_newer"]
