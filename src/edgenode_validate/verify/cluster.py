"""Probes against the cluster API."""

from edgenode_validate.system import WorkloadInfo

from .types import Finding, Probe, ProbeContext, Severity, failed, passed, warned

SYSTEM_NAMESPACE = "kube-system"
DNS_SELECTOR = "k8s-app=kube-dns"
LOCAL_PATH_SELECTOR = "app=local-path-provisioner"


def _check_kubectl(ctx: ProbeContext) -> Finding:
    path = ctx.system.cluster.binary_path()
    if path:
        return passed(path)
    return failed(
        f"{ctx.settings.kubectl} not found in PATH",
        "Try: export PATH=/usr/local/bin:$PATH",
    )


def kubectl_available() -> Probe:
    return Probe(
        name="kubectl-available",
        check=_check_kubectl,
        description="kubectl availability",
    )


def _check_kubeconfig(ctx: ProbeContext) -> Finding:
    path = ctx.settings.kubeconfig
    if ctx.system.host.path_exists(path):
        return passed(path)
    return failed(f"Kubeconfig not found at {path}", "Installation may be incomplete")


def kubeconfig_present() -> Probe:
    return Probe(
        name="kubeconfig-present",
        check=_check_kubeconfig,
        description="Kubeconfig",
    )


def _check_node_ready(ctx: ProbeContext) -> Finding:
    nodes = ctx.system.cluster.list_nodes()
    if not nodes:
        return failed("No nodes found", "Cluster may not be fully initialized")
    not_ready = [n.name for n in nodes if not n.ready]
    if not_ready:
        return failed(
            f"Not Ready: {', '.join(not_ready)}",
            "Check: kubectl describe node",
        )
    names = ", ".join(n.name for n in nodes)
    return passed(f"Ready: {names}")


def node_ready() -> Probe:
    return Probe(
        name="node-ready",
        check=_check_node_ready,
        description="Node status",
        remediation="Check: kubectl describe node",
    )


def workload_running(
    name: str,
    selector: str,
    namespace: str = SYSTEM_NAMESPACE,
    severity: Severity = Severity.CRITICAL,
    description: str = "",
) -> Probe:
    """At least one pod matching ``selector`` is Running."""
    hint = f"Check: kubectl get pods -n {namespace} -l {selector}"

    def check(ctx: ProbeContext) -> Finding:
        pods = ctx.system.cluster.list_workloads(namespace, selector)
        running = [p for p in pods if p.running and not p.terminating]
        if running:
            return passed(
                f"{len(running)} Running", pods=[p.name for p in running]
            )
        phases = ", ".join(f"{p.name}={p.phase}" for p in pods) or "no pods"
        if severity == Severity.CRITICAL:
            return failed(f"Not running ({phases})", hint)
        return warned(f"Not running ({phases})", hint)

    return Probe(
        name=name,
        check=check,
        severity=severity,
        description=description or name,
    )


def coredns_running() -> Probe:
    return workload_running(
        "coredns-running", DNS_SELECTOR, description="CoreDNS running"
    )


def local_path_running() -> Probe:
    return workload_running(
        "local-path-running",
        LOCAL_PATH_SELECTOR,
        severity=Severity.ADVISORY,
        description="local-path-provisioner running",
    )


def component_absent(component: str, pattern: str) -> Probe:
    """A component that should stay disabled has no pods."""

    def check(ctx: ProbeContext) -> Finding:
        present = [p.name for p in ctx.system.cluster.list_workloads() if pattern in p.name]
        if present:
            return failed(
                f"{component} is running (should be disabled): {', '.join(present)}",
                "Check the disable list in the K3s config",
            )
        return passed(f"{component} is disabled")

    return Probe(
        name=f"{pattern}-disabled",
        check=check,
        severity=Severity.ADVISORY,
        description=f"{component} disabled",
    )


def storage_class_exists(name: str = "local-path") -> Probe:
    def check(ctx: ProbeContext) -> Finding:
        if ctx.system.cluster.get_storage_class(name) is None:
            return failed(
                f"StorageClass {name!r} not found", "Check: kubectl get storageclass"
            )
        return passed(f"StorageClass {name!r} exists")

    return Probe(
        name="storageclass-exists",
        check=check,
        description="StorageClass",
    )


def storage_class_default(name: str = "local-path") -> Probe:
    def check(ctx: ProbeContext) -> Finding:
        storage_class = ctx.system.cluster.get_storage_class(name)
        if storage_class is None:
            return warned(f"StorageClass {name!r} not found")
        if not storage_class.is_default:
            return warned(f"{name} exists but is not marked as default")
        return passed(f"{name} is the default StorageClass")

    return Probe(
        name="storageclass-default",
        check=check,
        severity=Severity.ADVISORY,
        description="Default StorageClass",
    )


def _running(pods: list[WorkloadInfo]) -> list[WorkloadInfo]:
    return [p for p in pods if p.running]


def pod_census(required: bool = False) -> Probe:
    """Count Running pods across namespaces.

    With ``required`` a cluster without Running pods fails the check;
    otherwise it only warns.
    """

    def check(ctx: ProbeContext) -> Finding:
        pods = ctx.system.cluster.list_workloads()
        running = len(_running(pods))
        if running:
            return passed(f"{running} pods Running", running_pods=running, total_pods=len(pods))
        if required:
            return failed("No pods Running", running_pods=0, total_pods=len(pods))
        return warned("No pods are Running", running_pods=0, total_pods=len(pods))

    return Probe(
        name="pods-running" if required else "pod-census",
        check=check,
        severity=Severity.CRITICAL if required else Severity.ADVISORY,
        description="Pods running" if required else "Pod census",
    )


def _check_crashloop(ctx: ProbeContext) -> Finding:
    looping = [
        f"{p.namespace}/{p.name}"
        for p in ctx.system.cluster.list_workloads()
        if p.waiting_reason == "CrashLoopBackOff"
    ]
    if looping:
        return failed(
            f"{len(looping)} pods in CrashLoopBackOff: {', '.join(looping)}",
            "Check: kubectl get pods -A | grep CrashLoopBackOff",
        )
    return passed("No pods in CrashLoopBackOff")


def no_crashloop() -> Probe:
    return Probe(
        name="no-crashloop",
        check=_check_crashloop,
        description="Crash loops",
    )


def _check_internal_dns(ctx: ProbeContext) -> Finding:
    pods = _running(ctx.system.cluster.list_workloads(SYSTEM_NAMESPACE, DNS_SELECTOR))
    if not pods:
        return warned("CoreDNS pod not found for DNS test")
    ctx.system.cluster.exec_in_workload(
        pods[0].name, SYSTEM_NAMESPACE, ["nslookup", "kubernetes.default"]
    )
    return passed(f"kubernetes.default resolves via {pods[0].name}")


def internal_dns() -> Probe:
    return Probe(
        name="internal-dns",
        check=_check_internal_dns,
        severity=Severity.ADVISORY,
        description="Internal DNS resolution",
        remediation="CoreDNS may still be starting",
        best_effort=True,
    )


def _check_dns_resolution(ctx: ProbeContext) -> Finding:
    output = ctx.system.cluster.run_transient(
        "edgenode-dns-test",
        ctx.settings.dns_test_image,
        ["nslookup", "kubernetes.default.svc.cluster.local"],
    )
    if "Address:" in output:
        return passed("kubernetes.default.svc.cluster.local resolves")
    return warned("No address in nslookup output", "Pod may still be initializing")


def dns_resolution() -> Probe:
    return Probe(
        name="dns-resolution",
        check=_check_dns_resolution,
        severity=Severity.ADVISORY,
        description="DNS resolution from a new pod",
        timeout=90.0,
        best_effort=True,
    )
