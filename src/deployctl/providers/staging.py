"""Place cached artifacts into the production tree, idempotently.

Application jars are copied. Runtime archives are expanded into
``<prod_root>/<name>/<version>/<runtime dir>`` under the protection of a
sibling ``.<runtime dir>.staging`` marker: the marker is created before the
first entry is written and removed only after the last one, so a directory
that still has its marker is known to be incomplete and is rebuilt.
"""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from ..archive import ArchiveError, expand_archive
from ..errors import StagingError, StagingErrorKind
from ..models import ArtifactRef, StageKind
from .download import cache_path_for

LOGGER = logging.getLogger(__name__)

MARKER_SUFFIX = ".staging"


def marker_path_for(target: Path) -> Path:
    """Return the staging marker that guards *target*."""
    return target.with_name(f".{target.name}{MARKER_SUFFIX}")


class StagingPipeline:
    """Guarantee a fully populated production copy of a cached artifact."""

    def __init__(
        self,
        *,
        cache_root: Path,
        prod_root: Path,
        runtime_dir_template: str = "jdk-{version}",
    ) -> None:
        """Bind the cache and production roots plus the runtime directory name."""
        self.cache_root = Path(cache_root).expanduser()
        self.prod_root = Path(prod_root).expanduser()
        self.runtime_dir_template = runtime_dir_template

    def production_path(self, artifact: ArtifactRef, kind: StageKind) -> Path:
        """Return where *artifact* lives once staged (no I/O)."""
        base = self.prod_root / artifact.name / artifact.version
        if kind is StageKind.EXPAND:
            return base / self.runtime_dir_template.format(version=artifact.version)
        return base / artifact.file_name

    def ensure_staged(self, artifact: ArtifactRef, kind: StageKind) -> Path:
        """Stage *artifact* if needed and return its production path."""
        source = cache_path_for(self.cache_root, artifact)
        target = self.production_path(artifact, kind)
        if kind is StageKind.EXPAND:
            return self._ensure_expanded(artifact, source, target)
        return self._ensure_copied(artifact, source, target)

    # ------------------------------------------------------------------
    # Copy
    # ------------------------------------------------------------------
    def _ensure_copied(self, artifact: ArtifactRef, source: Path, target: Path) -> Path:
        if target.exists():
            return target
        self._require_cached(artifact, source)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.")
            os.close(tmp_fd)
            tmp_path = Path(tmp_name)
            try:
                shutil.copyfile(source, tmp_path)
                shutil.copymode(source, tmp_path)
                os.replace(tmp_path, target)
            finally:
                tmp_path.unlink(missing_ok=True)
        except OSError as exc:
            raise StagingError(
                StagingErrorKind.FILESYSTEM,
                f"Cannot copy {artifact} into {target}: {exc}",
            ) from exc
        LOGGER.info("Copied %s to %s", artifact, target)
        return target

    # ------------------------------------------------------------------
    # Expand
    # ------------------------------------------------------------------
    def _ensure_expanded(self, artifact: ArtifactRef, source: Path, target: Path) -> Path:
        marker = marker_path_for(target)
        try:
            if target.exists() and not marker.exists():
                return target
            if target.exists():
                LOGGER.warning("Removing incomplete expansion of %s at %s", artifact, target)
                shutil.rmtree(target)
            if marker.exists():
                marker.unlink()
        except OSError as exc:
            raise StagingError(
                StagingErrorKind.FILESYSTEM,
                f"Cannot clean up interrupted expansion at {target}: {exc}",
            ) from exc

        self._require_cached(artifact, source)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            marker.touch()
            expand_archive(source, target.parent)
        except ArchiveError as exc:
            raise StagingError(
                StagingErrorKind.BAD_ARCHIVE,
                f"Cannot expand {artifact}: {exc}",
            ) from exc
        except OSError as exc:
            raise StagingError(
                StagingErrorKind.FILESYSTEM,
                f"Cannot expand {artifact} into {target.parent}: {exc}",
            ) from exc

        if not target.is_dir():
            # Marker stays so the next attempt starts from a clean slate.
            raise StagingError(
                StagingErrorKind.BAD_ARCHIVE,
                f"Archive for {artifact} did not contain top-level directory '{target.name}'.",
            )

        try:
            marker.unlink()
        except OSError as exc:
            raise StagingError(
                StagingErrorKind.FILESYSTEM,
                f"Cannot remove staging marker {marker}: {exc}",
            ) from exc
        LOGGER.info("Expanded %s into %s", artifact, target)
        return target

    @staticmethod
    def _require_cached(artifact: ArtifactRef, source: Path) -> None:
        if not source.is_file():
            raise StagingError(
                StagingErrorKind.MISSING_CACHE,
                f"Cached artifact for {artifact} not found at {source}.",
            )


__all__ = ["MARKER_SUFFIX", "StagingPipeline", "marker_path_for"]
