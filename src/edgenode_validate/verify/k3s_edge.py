"""Validation checklist for a single-node K3s edge host."""

from . import cluster, host
from .types import Probe


def get_checks() -> list[Probe]:
    """Return the checklist in report order."""
    return [
        host.service_active(),
        host.service_enabled(),
        host.memory_usage(),
        host.disk_space(),
        host.service_logs(),
        host.swap_disabled(),
        host.cgroup_memory(),
        host.host_prep(),
        cluster.kubectl_available(),
        cluster.kubeconfig_present(),
        cluster.node_ready(),
        cluster.coredns_running(),
        cluster.local_path_running(),
        cluster.component_absent("Traefik", "traefik"),
        cluster.component_absent("ServiceLB", "svclb"),
        cluster.component_absent("metrics-server", "metrics-server"),
        cluster.storage_class_exists(),
        cluster.storage_class_default(),
    ]
