"""Resumable artifact downloads into the local cache.

Artifacts land at ``<cache_root>/<name>/<version>/<file_name>``. While a
transfer is in flight the bytes go to a ``.part`` sibling, and the response
validator (``ETag`` or ``Last-Modified``) is recorded in the download state
store before the first byte is written. A later attempt that finds the
partial file asks the server for the remaining range with ``If-Range`` so a
changed artifact restarts from zero instead of splicing two versions.
"""
from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable
from pathlib import Path

import httpx

from ..errors import DownloadError, DownloadErrorKind
from ..hostinfo import OsInfo, get_os_info
from ..models import ArtifactRef
from ..state import DownloadStateStore, StateRegistryError

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, "int | None"], None]

PARTIAL_SUFFIX = ".part"
_CONTENT_RANGE = re.compile(r"^\s*bytes\s+(\d+)-(\d+)/(\d+|\*)\s*$", re.IGNORECASE)


def cache_path_for(cache_root: Path, artifact: ArtifactRef) -> Path:
    """Return the finalised cache location for *artifact*."""
    return cache_root / artifact.name / artifact.version / artifact.file_name


def partial_path_for(final_path: Path) -> Path:
    return final_path.with_name(final_path.name + PARTIAL_SUFFIX)


class DownloadManager:
    """Guarantee that an artifact is present, complete, in the cache."""

    def __init__(
        self,
        *,
        cache_root: Path,
        state: DownloadStateStore,
        client: httpx.Client,
        chunk_size: int = 64 * 1024,
        os_info: OsInfo | None = None,
    ) -> None:
        """Bind the cache root, resume store, and HTTP client."""
        self.cache_root = Path(cache_root).expanduser()
        self.state = state
        self.client = client
        self.chunk_size = chunk_size
        self._os_info = os_info

    @property
    def os_info(self) -> OsInfo:
        if self._os_info is None:
            self._os_info = get_os_info()
        return self._os_info

    def cache_path(self, artifact: ArtifactRef) -> Path:
        return cache_path_for(self.cache_root, artifact)

    def acquire(
        self,
        root_url: str,
        artifact: ArtifactRef,
        progress: ProgressCallback | None = None,
    ) -> Path:
        """Return the cached path for *artifact*, downloading it when needed.

        A finalised cache file is trusted and returned without network I/O.
        Transport failures leave the partial file and its validator record in
        place for the next invocation to resume; nothing is retried here.
        """
        final_path = self.cache_path(artifact)
        if final_path.exists():
            LOGGER.debug("Cache hit for %s at %s", artifact, final_path)
            return final_path

        partial_path = partial_path_for(final_path)
        try:
            final_path.parent.mkdir(parents=True, exist_ok=True)
            offset = partial_path.stat().st_size if partial_path.exists() else 0
        except OSError as exc:
            raise DownloadError(
                DownloadErrorKind.FILESYSTEM,
                f"Cannot prepare cache directory {final_path.parent}: {exc}",
            ) from exc

        headers: dict[str, str] = {}
        validator = self.state.get(artifact.name, artifact.version) if offset else None
        if offset and validator:
            headers["Range"] = f"bytes={offset}-"
            headers["If-Range"] = validator
            LOGGER.info("Resuming %s from byte %d", artifact, offset)
        elif offset:
            LOGGER.info("Discarding %d unverifiable bytes of %s", offset, artifact)
            offset = 0

        url = f"{root_url.rstrip('/')}/apps"
        params = {
            "appName": artifact.name,
            "version": artifact.version,
            "targetOs": self.os_info.target_os,
            "arch": self.os_info.target_arch,
        }

        try:
            with self.client.stream("GET", url, params=params, headers=headers) as response:
                mode, written, total = self._prepare_body(
                    response, artifact, partial_path, offset=offset
                )
                with partial_path.open(mode) as sink:
                    for chunk in response.iter_raw(self.chunk_size):
                        if not chunk:
                            continue
                        sink.write(chunk)
                        written += len(chunk)
                        if progress is not None:
                            progress(written, total)
        except httpx.RequestError as exc:
            raise DownloadError(
                DownloadErrorKind.TRANSPORT,
                f"Download of {artifact} interrupted: {exc}",
            ) from exc
        except OSError as exc:
            raise DownloadError(
                DownloadErrorKind.FILESYSTEM,
                f"Cannot write {partial_path}: {exc}",
            ) from exc

        if total is not None and written != total:
            raise DownloadError(
                DownloadErrorKind.TRANSPORT,
                f"Download of {artifact} ended after {written} of {total} bytes.",
            )

        try:
            os.replace(partial_path, final_path)
        except OSError as exc:
            raise DownloadError(
                DownloadErrorKind.FILESYSTEM,
                f"Cannot finalise {final_path}: {exc}",
            ) from exc
        self._forget(artifact)
        LOGGER.info("Downloaded %s to %s (%d bytes)", artifact, final_path, written)
        return final_path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _prepare_body(
        self,
        response: httpx.Response,
        artifact: ArtifactRef,
        partial_path: Path,
        *,
        offset: int,
    ) -> tuple[str, int, int | None]:
        """Decide how to write *response* and return (mode, start, total)."""
        status = response.status_code
        if status == 404:
            raise DownloadError(
                DownloadErrorKind.NOT_FOUND,
                f"Artifact {artifact} ({artifact.file_name}) not found on the platform.",
                status_code=status,
            )

        if status == 206 and offset:
            start, total = _parse_content_range(response.headers.get("Content-Range"))
            if start != offset:
                raise DownloadError(
                    DownloadErrorKind.UNEXPECTED_STATUS,
                    f"Server resumed {artifact} at byte {start}, expected {offset}.",
                    status_code=status,
                )
            return "ab", offset, total

        if status == 200:
            # Full body: the recorded validator (if any) is stale.
            self._remember(artifact, _validator_for(response))
            length = response.headers.get("Content-Length")
            total = int(length) if length and length.isdigit() else None
            return "wb", 0, total

        if status == 416 and offset:
            # Partial file no longer matches the server; start over next time.
            partial_path.unlink(missing_ok=True)
            self._forget(artifact)
            raise DownloadError(
                DownloadErrorKind.UNEXPECTED_STATUS,
                f"Server rejected resume range for {artifact}; partial download discarded.",
                status_code=status,
            )

        raise DownloadError(
            DownloadErrorKind.UNEXPECTED_STATUS,
            f"Unexpected HTTP {status} while downloading {artifact}.",
            status_code=status,
        )

    def _remember(self, artifact: ArtifactRef, validator: str | None) -> None:
        try:
            if validator:
                self.state.put(artifact.name, artifact.version, validator)
            else:
                self.state.remove(artifact.name, artifact.version)
        except StateRegistryError as exc:
            raise DownloadError(
                DownloadErrorKind.FILESYSTEM,
                f"Cannot record download state for {artifact}: {exc}",
            ) from exc

    def _forget(self, artifact: ArtifactRef) -> None:
        try:
            self.state.remove(artifact.name, artifact.version)
        except StateRegistryError as exc:
            # The artifact is already final; a stale record only costs a request.
            LOGGER.warning("Cannot clear download state for %s: %s", artifact, exc)


def _validator_for(response: httpx.Response) -> str | None:
    return response.headers.get("ETag") or response.headers.get("Last-Modified")


def _parse_content_range(value: str | None) -> tuple[int, int | None]:
    """Return (first byte, total length) from a ``Content-Range`` header."""
    if not value:
        raise DownloadError(
            DownloadErrorKind.UNEXPECTED_STATUS,
            "Partial response is missing Content-Range.",
            status_code=206,
        )
    match = _CONTENT_RANGE.match(value)
    if match is None:
        raise DownloadError(
            DownloadErrorKind.UNEXPECTED_STATUS,
            f"Malformed Content-Range header: {value!r}.",
            status_code=206,
        )
    start = int(match.group(1))
    total_raw = match.group(3)
    return start, None if total_raw == "*" else int(total_raw)


__all__ = [
    "DownloadManager",
    "PARTIAL_SUFFIX",
    "ProgressCallback",
    "cache_path_for",
    "partial_path_for",
]
