from datetime import datetime, timedelta, timezone

import pytest

from edgenode_validate.config import Settings
from edgenode_validate.scenarios import CheckpointStore, ScenarioEngine, build_catalog
from edgenode_validate.system import (
    BootState,
    CollaboratorError,
    DiskUsage,
    EnablementState,
    FileInfo,
    MemoryUsage,
    NodeInfo,
    ServiceState,
    StorageClassInfo,
    System,
    WorkloadInfo,
)
from edgenode_validate.verify import ProbeContext

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def pod(name, namespace="kube-system", phase="Running", ready=True, **kwargs):
    return WorkloadInfo(name=name, namespace=namespace, phase=phase, ready=ready, **kwargs)


def coredns(name="coredns-6799fbcd5-abcde", **kwargs):
    kwargs.setdefault("labels", {"k8s-app": "kube-dns"})
    kwargs.setdefault("created_at", NOW)
    return pod(name, **kwargs)


class FakeServices:
    def __init__(self):
        self.active = {"k3s": ServiceState.ACTIVE}
        self.enabled = {
            "k3s": EnablementState.ENABLED,
            "dphys-swapfile": EnablementState.ENABLED,
        }
        self.calls = []

    def is_active(self, name):
        return self.active.get(name, ServiceState.UNKNOWN)

    def is_enabled(self, name):
        return self.enabled.get(name, EnablementState.UNKNOWN)

    def set_enabled(self, name, enabled):
        self.calls.append((name, enabled))
        self.enabled[name] = (
            EnablementState.ENABLED if enabled else EnablementState.DISABLED
        )


class FakeCluster:
    """In-memory cluster. Deleting a CoreDNS pod spawns a Ready replacement."""

    def __init__(self):
        self.kubectl_path = "/usr/local/bin/kubectl"
        self.nodes = [NodeInfo("edge-1", True)]
        self.workloads = [
            coredns(),
            pod("local-path-provisioner-84db5d44d9-xyz", labels={"app": "local-path-provisioner"}),
            pod("web-1", namespace="default", labels={"app": "web"}),
        ]
        self.storage_classes = {"local-path": StorageClassInfo("local-path", True)}
        self.respawn = True
        self.applied = []
        self.removed = []
        self.deleted = []
        self.transient_output = "Server: 10.43.0.10\nAddress: 10.43.0.1\n"
        self.fail_queries = False
        self.on_apply = None

    def binary_path(self):
        return self.kubectl_path

    def _query(self):
        if self.fail_queries:
            raise CollaboratorError("connection refused")

    def list_nodes(self):
        self._query()
        return list(self.nodes)

    def list_workloads(self, namespace=None, selector=None):
        self._query()
        pods = [p for p in self.workloads if namespace is None or p.namespace == namespace]
        if selector:
            key, value = selector.split("=", 1)
            pods = [p for p in pods if p.labels.get(key) == value]
        return pods

    def get_workload(self, name, namespace):
        for p in self.workloads:
            if p.name == name and p.namespace == namespace:
                return p
        return None

    def delete_workload(self, name, namespace):
        target = self.get_workload(name, namespace)
        if target is None:
            raise CollaboratorError(f"pod {name} not found")
        self.deleted.append(name)
        self.workloads.remove(target)
        if self.respawn:
            self.workloads.append(
                coredns(name="coredns-6799fbcd5-fresh", created_at=NOW + timedelta(seconds=2))
            )

    def apply_manifest(self, path):
        self.applied.append(str(path))
        if self.on_apply:
            self.on_apply(self)

    def delete_manifest(self, path):
        self.removed.append(str(path))
        self.workloads = [p for p in self.workloads if p.name != "memory-pressure-test"]

    def exec_in_workload(self, name, namespace, command):
        return "Name: kubernetes.default\nAddress: 10.43.0.1\n"

    def run_transient(self, name, image, command, timeout=60.0):
        return self.transient_output

    def get_storage_class(self, name):
        return self.storage_classes.get(name)


class FakeHost:
    def __init__(self):
        self.mem = MemoryUsage(total_mb=1906, used_mb=420)
        self.root_disk = DiskUsage(mount="/", total_gb=29.0, available_gb=21.5)
        self.boot = BootState(boot_id="boot-a", uptime_seconds=86400.0)
        self.cmdline = "console=tty1 root=PARTUUID=abc rootwait cgroup_memory=1 cgroup_enable=memory"
        self.swap = []
        self.controllers = {"cpu", "memory", "pids"}
        self.paths = {
            "/etc/rancher/k3s/k3s.yaml",
            "/var/lib/rancher/k3s/server/db/state.db",
        }

    def memory(self):
        return self.mem

    def disk(self, mount="/"):
        return self.root_disk

    def boot_state(self):
        return self.boot

    def kernel_cmdline(self):
        return self.cmdline

    def swap_devices(self):
        return list(self.swap)

    def cgroup_controllers(self):
        return set(self.controllers)

    def path_exists(self, path):
        return path in self.paths

    def file_info(self, path):
        if path not in self.paths:
            return None
        return FileInfo(path=path, size=4 * 1024 * 1024, modified_at=NOW)


class FakeLogs:
    def __init__(self):
        self.recent = []
        self.boot_lines = []

    def query(self, unit, since):
        return list(self.recent)

    def boot(self, unit=None):
        return list(self.boot_lines)


class FakeNetwork:
    def __init__(self):
        self.up = True

    def reachable(self, target, timeout=2.0):
        return self.up


@pytest.fixture
def system():
    return System(
        services=FakeServices(),
        cluster=FakeCluster(),
        host=FakeHost(),
        logs=FakeLogs(),
        network=FakeNetwork(),
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(state_dir=tmp_path / "state", settle_seconds=0)


@pytest.fixture
def context(system, settings):
    return ProbeContext(system=system, settings=settings)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(context, settings, sleeps):
    return ScenarioEngine(
        store=CheckpointStore(settings.scenario_dir),
        context=context,
        catalog=build_catalog(settings),
        sleep=sleeps.append,
        default_threshold=settings.pass_threshold,
    )
