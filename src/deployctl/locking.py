"""Advisory file locks that serialise mutating deployctl invocations.

Only one agent process may mutate the unit registry, the download cache and
the production tree at a time. The lock lives at ``<runtime_dir>/deployctl.lock``
and records the holder's pid so operators can see who is holding it. The
lockfile itself persists after release.
"""
from __future__ import annotations

import json
import os
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO

if sys.platform == "win32":  # pragma: no cover - exercised on Windows only
    import msvcrt
else:
    import fcntl

_POLL_INTERVAL = 0.05
GLOBAL_LOCK_NAME = "deployctl.lock"


class LockError(RuntimeError):
    """Raised when a lockfile cannot be opened or written."""


class LockTimeoutError(LockError):
    """Raised when a lock cannot be acquired before the timeout elapses."""


@dataclass(frozen=True, slots=True)
class LockHandle:
    """Information about a held lock."""

    path: Path
    wait_ms: int


class LockManager:
    """Create and acquire deployctl lockfiles under *runtime_dir*."""

    def __init__(self, runtime_dir: Path, default_timeout: float) -> None:
        """Store the lock directory and default acquisition timeout."""
        self.runtime_dir = Path(runtime_dir).expanduser()
        self.default_timeout = float(default_timeout)

    def lock_path(self) -> Path:
        return self.runtime_dir / GLOBAL_LOCK_NAME

    @contextmanager
    def agent_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the agent-wide lock for the duration of the block."""
        effective = self.default_timeout if timeout is None else timeout
        with self._acquire(self.lock_path(), effective) as handle:
            yield handle

    @contextmanager
    def _acquire(self, path: Path, timeout: float) -> Iterator[LockHandle]:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            stream = path.open("a+", encoding="utf-8")
        except OSError as exc:
            raise LockError(f"Unable to open lockfile {path}: {exc}") from exc

        started = time.monotonic()
        try:
            while True:
                if _try_lock(stream):
                    break
                if time.monotonic() - started >= timeout:
                    raise LockTimeoutError(
                        f"Timed out after {timeout:.1f}s waiting for lock {path}."
                    )
                time.sleep(_POLL_INTERVAL)

            wait_ms = int((time.monotonic() - started) * 1000)
            try:
                _write_metadata(stream, path)
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                _unlock(stream)
        finally:
            stream.close()


def _write_metadata(stream: IO[str], path: Path) -> None:
    payload = {
        "pid": os.getpid(),
        "path": str(path),
        "acquired_at": time.time(),
    }
    try:
        stream.seek(0)
        stream.truncate()
        stream.write(json.dumps(payload))
        stream.flush()
    except OSError as exc:
        raise LockError(f"Unable to write lock metadata to {path}: {exc}") from exc


if sys.platform == "win32":  # pragma: no cover - exercised on Windows only

    def _try_lock(stream: IO[str]) -> bool:
        stream.seek(0)
        try:
            msvcrt.locking(stream.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _unlock(stream: IO[str]) -> None:
        stream.seek(0)
        msvcrt.locking(stream.fileno(), msvcrt.LK_UNLCK, 1)

else:

    def _try_lock(stream: IO[str]) -> bool:
        try:
            fcntl.flock(stream.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _unlock(stream: IO[str]) -> None:
        fcntl.flock(stream.fileno(), fcntl.LOCK_UN)


__all__ = ["LockError", "LockHandle", "LockManager", "LockTimeoutError"]
