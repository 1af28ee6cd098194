"""Provider interfaces for deployctl."""
from __future__ import annotations

from .download import DownloadManager, ProgressCallback
from .launcher import JavaLauncher, Launcher
from .process import (
    LsofProcessSupervisor,
    ProcessSupervisor,
    PsutilProcessSupervisor,
    default_process_supervisor,
)
from .remote import RemotePlatformClient
from .staging import StagingPipeline

__all__ = [
    "DownloadManager",
    "JavaLauncher",
    "Launcher",
    "LsofProcessSupervisor",
    "ProcessSupervisor",
    "ProgressCallback",
    "PsutilProcessSupervisor",
    "RemotePlatformClient",
    "StagingPipeline",
    "default_process_supervisor",
]
