"""Tests for the locking primitives."""
from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from deployctl.locking import LockError, LockManager, LockTimeoutError


def test_agent_lock_creates_metadata(tmp_path: Path) -> None:
    """Acquiring the agent lock writes metadata and releases cleanly."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    lock_path = tmp_path / "run" / "deployctl.lock"
    with manager.agent_lock() as handle:
        assert handle.wait_ms >= 0
        assert handle.path == lock_path
        assert lock_path.exists()
        data = json.loads(lock_path.read_text(encoding="utf-8"))
        assert data["pid"] == os.getpid()
        assert data["path"] == str(lock_path)

    # Lockfile persists for diagnostics but no longer holds the lock.
    with manager.agent_lock(timeout=0.2):
        pass


@pytest.mark.mutation_timeout
def test_agent_lock_timeout(tmp_path: Path) -> None:
    """Second acquisition times out while the first lock is held."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.agent_lock():
        with pytest.raises(LockTimeoutError):
            with manager.agent_lock(timeout=0.1):
                pass


def test_agent_lock_unwritable_directory(tmp_path: Path) -> None:
    """A runtime directory that is really a file surfaces as LockError."""
    blocker = tmp_path / "run"
    blocker.write_text("not a directory", encoding="utf-8")
    manager = LockManager(blocker, default_timeout=0.1)

    with pytest.raises(LockError):
        with manager.agent_lock():
            pass
