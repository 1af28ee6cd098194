"""Archive expansion used when staging runtime bundles.

Entries are written one at a time relative to the destination directory:
directories are created, files get their parent directories created first
and are streamed in full, and Unix permission bits stored in the archive are
reapplied afterwards so ``bin/java`` stays executable. Entries whose paths
would land outside the destination are rejected before anything is written.
"""
from __future__ import annotations

import os
import shutil
import stat
import tarfile
import zipfile
from pathlib import Path, PurePosixPath

_COPY_BUFFER = 1024 * 1024
_TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz")


class ArchiveError(RuntimeError):
    """Raised when an archive is unreadable or contains unsafe entries."""


def expand_archive(archive_path: Path, destination: Path) -> list[Path]:
    """Expand *archive_path* into *destination* and return the written paths."""
    destination.mkdir(parents=True, exist_ok=True)
    if zipfile.is_zipfile(archive_path):
        return _expand_zip(archive_path, destination)
    if archive_path.name.lower().endswith(_TAR_SUFFIXES) or tarfile.is_tarfile(archive_path):
        return _expand_tar(archive_path, destination)
    raise ArchiveError(f"Unsupported archive format: {archive_path.name}")


def _safe_target(destination: Path, member_name: str) -> Path:
    member_path = PurePosixPath(member_name.replace("\\", "/"))
    if member_path.is_absolute() or ".." in member_path.parts:
        raise ArchiveError(f"Archive entry escapes destination: {member_name}")
    parts = [part for part in member_path.parts if part not in ("", ".")]
    return destination.joinpath(*parts) if parts else destination


def _apply_mode(path: Path, mode: int) -> None:
    permissions = stat.S_IMODE(mode)
    if permissions:
        os.chmod(path, permissions)


# ----------------------------------------------------------------------
# zip
# ----------------------------------------------------------------------
def _expand_zip(archive_path: Path, destination: Path) -> list[Path]:
    written: list[Path] = []
    try:
        with zipfile.ZipFile(archive_path) as archive:
            for info in archive.infolist():
                target = _safe_target(destination, info.filename)
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with archive.open(info) as source, target.open("wb") as sink:
                        shutil.copyfileobj(source, sink, _COPY_BUFFER)
                # Upper 16 bits of external_attr carry st_mode on Unix-built archives.
                _apply_mode(target, info.external_attr >> 16)
                written.append(target)
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"Corrupt zip archive {archive_path.name}: {exc}") from exc
    return written


# ----------------------------------------------------------------------
# tar
# ----------------------------------------------------------------------
def _expand_tar(archive_path: Path, destination: Path) -> list[Path]:
    written: list[Path] = []
    root = destination.resolve()
    try:
        with tarfile.open(archive_path, "r:*") as archive:
            for member in archive:
                target = _safe_target(destination, member.name)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    _apply_mode(target, member.mode)
                elif member.isfile():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    source = archive.extractfile(member)
                    if source is None:
                        raise ArchiveError(f"Unreadable archive entry: {member.name}")
                    with source, target.open("wb") as sink:
                        shutil.copyfileobj(source, sink, _COPY_BUFFER)
                    _apply_mode(target, member.mode)
                elif member.issym():
                    _link_inside(root, target, member.linkname, symbolic=True)
                elif member.islnk():
                    link_source = _safe_target(destination, member.linkname)
                    _link_inside(root, target, str(link_source), symbolic=False)
                else:
                    # Devices and FIFOs have no place in a runtime bundle.
                    continue
                written.append(target)
    except tarfile.TarError as exc:
        raise ArchiveError(f"Corrupt tar archive {archive_path.name}: {exc}") from exc
    return written


def _link_inside(root: Path, target: Path, link_name: str, *, symbolic: bool) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    if symbolic:
        resolved = (target.parent / link_name).resolve()
    else:
        resolved = Path(link_name).resolve()
    if resolved != root and root not in resolved.parents:
        raise ArchiveError(f"Archive link escapes destination: {target.name} -> {link_name}")
    if target.is_symlink() or target.exists():
        target.unlink()
    if symbolic:
        os.symlink(link_name, target)
    else:
        shutil.copy2(resolved, target)


__all__ = ["ArchiveError", "expand_archive"]
