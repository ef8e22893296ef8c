"""Typed collaborators for querying the host and the cluster."""

from dataclasses import dataclass

from edgenode_validate.config import Settings

from .host import HostMetrics
from .journal import JournalLogs
from .kubectl import KubectlCluster
from .network import Network
from .systemd import SystemdServices
from .types import (
    BootState,
    CollaboratorError,
    CommandUnavailable,
    DiskUsage,
    EnablementState,
    FileInfo,
    MemoryUsage,
    NodeInfo,
    ServiceState,
    StorageClassInfo,
    WorkloadInfo,
)

__all__ = [
    "BootState",
    "CollaboratorError",
    "CommandUnavailable",
    "DiskUsage",
    "EnablementState",
    "FileInfo",
    "MemoryUsage",
    "NodeInfo",
    "ServiceState",
    "StorageClassInfo",
    "System",
    "WorkloadInfo",
    "build_system",
]


@dataclass
class System:
    """Everything probes and scenario steps may talk to."""

    services: SystemdServices
    cluster: KubectlCluster
    host: HostMetrics
    logs: JournalLogs
    network: Network


def build_system(settings: Settings) -> System:
    """Wire real collaborators from settings."""
    return System(
        services=SystemdServices(timeout=settings.command_timeout),
        cluster=KubectlCluster(
            kubectl=settings.kubectl,
            kubeconfig=settings.kubeconfig,
            timeout=settings.command_timeout,
        ),
        host=HostMetrics(),
        logs=JournalLogs(timeout=settings.command_timeout),
        network=Network(),
    )
