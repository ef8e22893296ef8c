"""Collaborator result types."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class CommandUnavailable(Exception):
    """A required command is not installed on the host."""

    def __init__(self, command: str):
        super().__init__(f"{command} not found in PATH")
        self.command = command


class CollaboratorError(Exception):
    """A query against the host or cluster failed."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class ServiceState(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"


class EnablementState(Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NodeInfo:
    name: str
    ready: bool


@dataclass(frozen=True)
class WorkloadInfo:
    """A pod as seen by the cluster.

    ``reason`` carries the termination or eviction reason when there is one
    (``Evicted``, ``OOMKilled``), ``waiting_reason`` the container waiting
    reason (``CrashLoopBackOff``, ``ImagePullBackOff``).
    """

    name: str
    namespace: str
    phase: str
    restart_count: int = 0
    ready: bool = False
    reason: str = ""
    waiting_reason: str = ""
    created_at: datetime | None = None
    terminating: bool = False
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.phase == "Running"


@dataclass(frozen=True)
class StorageClassInfo:
    name: str
    is_default: bool


@dataclass(frozen=True)
class MemoryUsage:
    total_mb: int
    used_mb: int


@dataclass(frozen=True)
class DiskUsage:
    mount: str
    total_gb: float
    available_gb: float


@dataclass(frozen=True)
class BootState:
    boot_id: str | None
    uptime_seconds: float


@dataclass(frozen=True)
class FileInfo:
    path: str
    size: int
    modified_at: datetime
