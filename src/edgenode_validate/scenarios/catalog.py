"""
Failure scenarios for a single-node edge cluster.

Each scenario opens with the same pre-test gate. Steps that act on the
cluster read earlier results from the run's checkpoint (``ctx.notes``),
keyed by step name.
"""

from dataclasses import replace
from datetime import datetime, timezone
from importlib.resources import files
from typing import Any

from edgenode_validate.config import Settings
from edgenode_validate.verify import cluster, host
from edgenode_validate.verify.types import (
    Finding,
    Probe,
    ProbeContext,
    Severity,
    failed,
    passed,
    warned,
)

from .types import Action, AutomatedCheck, ManualAction, Scenario, ScenarioStep, Wait

PRESSURE_MANIFEST = "memory-pressure-test.yaml"
PRESSURE_WORKLOAD = "memory-pressure-test"
PRESSURE_NAMESPACE = "default"

# Chained by run-all. The reboot scenarios stay manual: the host goes down mid-run
RUN_ALL_ORDER = ("workload-recovery", "memory-pressure", "network-isolation")
REBOOT_SCENARIOS = ("reboot-recovery", "power-loss")

# Either counts as evidence that the eviction policy works
ACCEPTED_PRESSURE_OUTCOMES = frozenset({"Evicted", "OOMKilled"})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def precheck() -> list[ScenarioStep]:
    """Gate every scenario on a working cluster."""
    return [
        AutomatedCheck(host.service_active(), abort_on_fail=True),
        AutomatedCheck(cluster.kubectl_available(), abort_on_fail=True),
        AutomatedCheck(cluster.node_ready(), abort_on_fail=True),
        AutomatedCheck(cluster.pod_census()),
    ]


def _renamed(probe: Probe, name: str, description: str, **changes: Any) -> Probe:
    return replace(probe, name=name, description=description, **changes)


# Reboot detection


def capture_boot(ctx: ProbeContext) -> dict[str, Any]:
    state = ctx.system.host.boot_state()
    return {
        "boot_id": state.boot_id,
        "uptime_seconds": state.uptime_seconds,
        "captured_at": _now(),
    }


def confirm_reboot(ctx: ProbeContext, captured: dict[str, Any]) -> Finding:
    """Compare the boot identity with the one captured before the action."""
    state = ctx.system.host.boot_state()
    before_id = captured.get("boot_id")
    before_uptime = captured.get("uptime_seconds")

    if before_id and state.boot_id:
        rebooted = state.boot_id != before_id
    elif before_uptime is not None:
        rebooted = state.uptime_seconds < float(before_uptime)
    else:
        return warned("No boot state was captured before the action")

    if rebooted:
        return passed(
            f"Host rebooted (up {state.uptime_seconds:.0f}s)",
            boot_id=state.boot_id,
            uptime_seconds=state.uptime_seconds,
        )
    return warned(
        f"Host does not appear to have rebooted (up {state.uptime_seconds:.0f}s)",
        "Reboot the host, then resume the scenario",
        boot_id=state.boot_id,
        uptime_seconds=state.uptime_seconds,
    )


def confirm_disconnected(ctx: ProbeContext, captured: dict[str, Any]) -> Finding:
    target = ctx.settings.connectivity_target
    if ctx.system.network.reachable(target):
        return warned(
            f"Network still appears connected ({target} is reachable)",
            "Ensure the network interface is down or the cable is unplugged",
        )
    return passed(f"Network is disconnected (cannot reach {target})")


def _settle(settings: Settings) -> Wait:
    return Wait(settings.settle_seconds, "let the service stabilise after boot")


def _node_ready_within(settings: Settings) -> Probe:
    interval = 5.0
    return _renamed(
        cluster.node_ready(),
        "node-ready-after-boot",
        "Node Ready after boot",
        retries=max(0, int(settings.recovery_bound_seconds // interval)),
        retry_interval=interval,
    )


def reboot_recovery(settings: Settings) -> Scenario:
    return Scenario(
        id="reboot-recovery",
        alias="1",
        title="Reboot Recovery",
        purpose="Verify the service survives a reboot and starts without intervention",
        rationale="Edge devices experience frequent power cycles",
        steps=(
            *precheck(),
            AutomatedCheck(host.service_enabled(strict=True), abort_on_fail=True),
            ManualAction(
                description="Perform a clean reboot",
                token="rebooted",
                instructions=("Run: sudo reboot",),
                capture=capture_boot,
                confirm=confirm_reboot,
            ),
            _settle(settings),
            AutomatedCheck(
                _renamed(
                    host.service_active(), "service-autostarted", "Service auto-started"
                )
            ),
            AutomatedCheck(_node_ready_within(settings)),
            AutomatedCheck(
                _renamed(
                    cluster.coredns_running(),
                    "coredns-after-boot",
                    "CoreDNS running after boot",
                )
            ),
            AutomatedCheck(cluster.no_crashloop()),
            AutomatedCheck(host.boot_log_errors(), weight=0.5),
        ),
        common_causes=(
            "Service not enabled (systemctl enable k3s)",
            "systemd dependency issues",
            "Persistent storage corruption",
        ),
    )


def power_loss(settings: Settings) -> Scenario:
    return Scenario(
        id="power-loss",
        alias="2",
        title="Power Loss Simulation",
        purpose="Verify the cluster recovers from a hard shutdown with no graceful stop",
        rationale="Edge devices experience power failures without warning",
        steps=(
            *precheck(),
            AutomatedCheck(host.datastore_state()),
            ManualAction(
                description="Force a power cycle without a clean shutdown",
                token="power-cycled",
                instructions=(
                    "Run: sudo sync && sudo reboot -f",
                    "This is a hard shutdown. Use only on test systems.",
                ),
                capture=capture_boot,
                confirm=confirm_reboot,
            ),
            _settle(settings),
            AutomatedCheck(
                _renamed(
                    host.service_active(), "service-recovered", "Service recovered"
                )
            ),
            AutomatedCheck(host.datastore_integrity()),
            AutomatedCheck(
                _renamed(
                    cluster.pod_census(required=True),
                    "pods-rescheduled",
                    "Pods rescheduled",
                    retries=3,
                    retry_interval=5.0,
                )
            ),
            AutomatedCheck(host.fs_corruption_signals(), weight=0.5),
        ),
        common_causes=(
            "Datastore corruption (fsync issues)",
            "SD card corruption (use a better card, enable sync mount)",
            "Incomplete writes during shutdown",
        ),
    )


def network_isolation(settings: Settings) -> Scenario:
    return Scenario(
        id="network-isolation",
        alias="3",
        title="Network Disconnection",
        purpose="Verify the cluster keeps operating without external network",
        rationale="Edge devices have intermittent connectivity",
        steps=(
            *precheck(),
            AutomatedCheck(host.connectivity()),
            ManualAction(
                description="Disconnect the network interface",
                token="disconnected",
                instructions=(
                    "Option A, WiFi: sudo ip link set wlan0 down",
                    "Option B, Ethernet: sudo ip link set eth0 down",
                    "Option C: stop the service, unplug the cable, start the service",
                ),
                confirm=confirm_disconnected,
            ),
            AutomatedCheck(
                _renamed(
                    host.service_active(),
                    "service-active-offline",
                    "Service active while offline",
                )
            ),
            AutomatedCheck(
                _renamed(
                    cluster.node_ready(), "node-ready-offline", "Node Ready while offline"
                )
            ),
            AutomatedCheck(
                _renamed(
                    cluster.pod_census(required=True),
                    "pods-running-offline",
                    "Pods running while offline",
                )
            ),
            AutomatedCheck(cluster.internal_dns()),
            ManualAction(
                description="Reconnect the network",
                token="reconnected",
                instructions=(
                    "Re-enable the interface: sudo ip link set <interface> up",
                    "Or reconnect the cable/WiFi",
                ),
            ),
            AutomatedCheck(
                _renamed(
                    host.connectivity(),
                    "connectivity-restored",
                    "Connectivity restored",
                    retries=3,
                    retry_interval=5.0,
                )
            ),
        ),
        common_causes=(
            "Cluster configured to require external dependencies",
            "Pods pulling images from external registries (ImagePullBackOff)",
            "Network policies blocking internal traffic",
        ),
    )


# Memory pressure


def _pressure_manifest() -> str:
    return str(files("edgenode_validate.manifests").joinpath(PRESSURE_MANIFEST))


def deploy_pressure_workload(ctx: ProbeContext) -> dict[str, Any]:
    ctx.system.cluster.apply_manifest(_pressure_manifest())
    return {"workload": PRESSURE_WORKLOAD, "deployed_at": _now()}


def remove_pressure_workload(ctx: ProbeContext) -> dict[str, Any]:
    ctx.system.cluster.delete_manifest(_pressure_manifest())
    return {"removed_at": _now()}


def _check_pressure_outcome(ctx: ProbeContext) -> Finding:
    pod = ctx.system.cluster.get_workload(PRESSURE_WORKLOAD, PRESSURE_NAMESPACE)
    if pod is None:
        return warned("Test workload not found", "Check: kubectl get events | grep -i evict")
    if pod.reason in ACCEPTED_PRESSURE_OUTCOMES:
        return passed(
            f"Workload {pod.reason} (eviction policy working)",
            phase=pod.phase,
            reason=pod.reason,
        )
    if pod.running:
        return warned(
            "Workload still Running; memory was sufficient, eviction not exercised",
            phase=pod.phase,
        )
    return warned(f"Workload status: {pod.phase} {pod.reason}".strip(), phase=pod.phase)


def pressure_outcome() -> Probe:
    return Probe(
        name="pressure-outcome",
        check=_check_pressure_outcome,
        severity=Severity.ADVISORY,
        description="Pressured workload evicted or killed",
    )


def memory_pressure(settings: Settings) -> Scenario:
    return Scenario(
        id="memory-pressure",
        alias="4",
        title="Memory Pressure and Eviction",
        purpose="Verify the kubelet evicts workloads under memory pressure",
        rationale="Constrained devices must handle OOM gracefully",
        steps=(
            *precheck(),
            AutomatedCheck(host.memory_usage()),
            Action(
                name="deploy-pressure-workload",
                run=deploy_pressure_workload,
                description="Deploy memory-hungry test workload",
            ),
            Wait(10, "let the workload start"),
            Wait(30, "watch for eviction"),
            AutomatedCheck(
                _renamed(
                    cluster.node_ready(),
                    "node-ready-under-pressure",
                    "Node Ready under pressure",
                )
            ),
            AutomatedCheck(pressure_outcome()),
            AutomatedCheck(
                _renamed(
                    cluster.coredns_running(),
                    "protected-workloads",
                    "Critical workloads still running",
                )
            ),
            Action(
                name="remove-pressure-workload",
                run=remove_pressure_workload,
                description="Remove test workload",
                always_run=True,
            ),
        ),
        common_causes=(
            "Eviction thresholds not configured correctly",
            "Insufficient system/kube memory reservations",
            "OOM killer targeting critical system processes",
        ),
    )


# Workload recovery


def _check_target(ctx: ProbeContext) -> Finding:
    pods = ctx.system.cluster.list_workloads(cluster.SYSTEM_NAMESPACE, cluster.DNS_SELECTOR)
    running = [p for p in pods if p.running and not p.terminating]
    if not running:
        return failed(
            "No running CoreDNS pod to delete",
            f"Check: kubectl get pods -n {cluster.SYSTEM_NAMESPACE} -l {cluster.DNS_SELECTOR}",
        )
    target = running[0]
    return passed(
        f"Target: {target.name}", target=target.name, namespace=target.namespace
    )


def workload_target() -> Probe:
    return Probe(
        name="workload-target",
        check=_check_target,
        description="Target workload identified",
    )


def _target(ctx: ProbeContext) -> dict[str, Any]:
    return ctx.notes.get("workload-target", {})


def delete_target(ctx: ProbeContext) -> dict[str, Any]:
    target = _target(ctx)
    if not target.get("target"):
        raise ValueError("no target workload recorded")
    ctx.system.cluster.delete_workload(target["target"], target["namespace"])
    return {"deleted": target["target"], "deleted_at": _now()}


def _replacements(ctx: ProbeContext) -> list:
    target = _target(ctx).get("target")
    pods = ctx.system.cluster.list_workloads(cluster.SYSTEM_NAMESPACE, cluster.DNS_SELECTOR)
    return [p for p in pods if p.name != target and not p.terminating]


def _check_replacement_created(ctx: ProbeContext) -> Finding:
    pods = _replacements(ctx)
    if not pods:
        return failed(
            "No replacement pod created",
            "Check that a Deployment or ReplicaSet manages the workload",
        )
    pod = pods[0]
    created = pod.created_at.isoformat() if pod.created_at else None
    return passed(f"Replacement created: {pod.name}", replacement=pod.name, created_at=created)


def replacement_created() -> Probe:
    # Bounded poll of about 20 seconds
    return Probe(
        name="replacement-created",
        check=_check_replacement_created,
        description="Replacement created",
        retries=6,
        retry_interval=2.5,
    )


def _check_replacement_ready(ctx: ProbeContext) -> Finding:
    name = ctx.notes.get("replacement-created", {}).get("replacement")
    pods = _replacements(ctx)
    if name:
        pods = [p for p in pods if p.name == name]
    ready = [p for p in pods if p.running and p.ready]
    if ready:
        return passed(f"{ready[0].name} is Ready", ready_at=_now())
    phases = ", ".join(f"{p.name}={p.phase}" for p in pods) or "no pods"
    return warned(f"Replacement not Ready ({phases})", "Pod may still be starting")


def replacement_ready() -> Probe:
    return Probe(
        name="replacement-ready",
        check=_check_replacement_ready,
        severity=Severity.ADVISORY,
        description="Replacement Ready",
        retries=5,
        retry_interval=2.0,
    )


def _elapsed(start: str | None, end: str | None) -> float | None:
    if not start or not end:
        return None
    return (datetime.fromisoformat(end) - datetime.fromisoformat(start)).total_seconds()


def _check_recovery_time(ctx: ProbeContext) -> Finding:
    bound = ctx.settings.recovery_bound_seconds
    deleted_at = ctx.notes.get("delete-target", {}).get("deleted_at")
    ready_at = ctx.notes.get("replacement-ready", {}).get("ready_at")
    seconds = _elapsed(deleted_at, ready_at)
    if seconds is None:
        return warned("Recovery time not measured; replacement never became Ready")
    if seconds <= bound:
        return passed(f"Recovered in {seconds:.1f}s", recovery_seconds=seconds)
    return warned(
        f"Recovered in {seconds:.1f}s (bound {bound:g}s)",
        "Check resource constraints and image pull times",
        recovery_seconds=seconds,
    )


def recovery_time() -> Probe:
    return Probe(
        name="recovery-time",
        check=_check_recovery_time,
        severity=Severity.ADVISORY,
        description="Recovery time",
    )


def workload_recovery(settings: Settings) -> Scenario:
    return Scenario(
        id="workload-recovery",
        alias="5",
        title="Pod Failure Recovery",
        purpose="Verify the orchestrator replaces a failed workload",
        rationale="Unattended edge devices must self-heal",
        steps=(
            *precheck(),
            AutomatedCheck(workload_target(), abort_on_fail=True),
            Action(
                name="delete-target",
                run=delete_target,
                description="Delete target workload",
            ),
            Wait(5, "let the controller notice"),
            AutomatedCheck(replacement_created()),
            AutomatedCheck(replacement_ready()),
            AutomatedCheck(cluster.dns_resolution()),
            AutomatedCheck(recovery_time()),
        ),
        common_causes=(
            "Deployment/ReplicaSet not managing the pod",
            "Image pull failure (check connectivity)",
            "Resource constraints preventing restart",
        ),
    )


def build_catalog(settings: Settings) -> dict[str, Scenario]:
    """All scenarios keyed by id, in menu order."""
    scenarios = [
        reboot_recovery(settings),
        power_loss(settings),
        network_isolation(settings),
        memory_pressure(settings),
        workload_recovery(settings),
    ]
    return {s.id: s for s in scenarios}
