"""Probes against the host OS: service state, resources, boot and logs."""

import re

from edgenode_validate.errors import ApplierPreconditionFailed
from edgenode_validate.system import CollaboratorError, EnablementState, ServiceState

from .types import (
    Finding,
    Probe,
    ProbeContext,
    Severity,
    failed,
    passed,
    warned,
)

# Matches lines worth a second look. Vendored k8s source paths mention
# "error" in harmless stack frames.
ERROR_PATTERN = re.compile(r"error", re.IGNORECASE)
ERROR_NOISE = "vendor/k8s.io"
CORRUPTION_PATTERN = re.compile(r"corruption|fsck|filesystem.*error", re.IGNORECASE)

CGROUP_PARAMS = ("cgroup_memory=1", "cgroup_enable=memory")


def _logs_hint(ctx: ProbeContext) -> str:
    return f"Check logs: sudo journalctl -u {ctx.settings.service} --no-pager -n 50"


def _check_service_active(ctx: ProbeContext) -> Finding:
    service = ctx.settings.service
    state = ctx.system.services.is_active(service)
    if state == ServiceState.ACTIVE:
        return passed(f"{service} service is active")
    if state == ServiceState.INACTIVE:
        return failed(f"{service} service is not running", _logs_hint(ctx))
    return failed(f"{service} service state is unknown (not installed?)", _logs_hint(ctx))


def service_active() -> Probe:
    return Probe(
        name="service-active",
        check=_check_service_active,
        description="Service status",
    )


def service_enabled(strict: bool = False) -> Probe:
    """Boot persistence of the service.

    A disabled service is a WARN for routine checks; ``strict`` makes it a
    FAIL, for scenarios that depend on the service coming back by itself.
    """

    def check(ctx: ProbeContext) -> Finding:
        service = ctx.settings.service
        state = ctx.system.services.is_enabled(service)
        if state == EnablementState.ENABLED:
            return passed(f"{service} is enabled (will start on boot)")
        hint = f"Enable with: sudo systemctl enable {service}"
        message = (
            f"{service} is not enabled for auto-start"
            if state == EnablementState.DISABLED
            else f"{service} enablement state is unknown"
        )
        return failed(message, hint) if strict else warned(message, hint)

    return Probe(
        name="service-enabled",
        check=check,
        severity=Severity.CRITICAL if strict else Severity.ADVISORY,
        description="Service enabled at boot",
    )


def _check_memory(ctx: ProbeContext) -> Finding:
    usage = ctx.system.host.memory()
    settings = ctx.settings
    detail = f"Used {usage.used_mb}MB of {usage.total_mb}MB"
    data = {"used_mb": usage.used_mb, "total_mb": usage.total_mb}
    if usage.used_mb < settings.memory_warn_mb:
        return passed(detail, **data)
    if usage.used_mb < settings.memory_fail_mb:
        return warned(f"{detail} (moderate)", **data)
    return failed(
        f"{detail} (limit {settings.memory_fail_mb}MB)",
        f"Check {settings.service} memory: sudo systemctl status {settings.service}",
        **data,
    )


def memory_usage() -> Probe:
    return Probe(
        name="memory-usage",
        check=_check_memory,
        severity=Severity.ADVISORY,
        description="Memory usage",
        remediation="Disable unused components or reduce workload requests",
    )


def _check_disk(ctx: ProbeContext) -> Finding:
    settings = ctx.settings
    usage = ctx.system.host.disk(settings.disk_mount)
    detail = f"{usage.available_gb:.1f}GB available on {usage.mount}"
    data = {"available_gb": round(usage.available_gb, 2)}
    if usage.available_gb > settings.disk_warn_gb:
        return passed(detail, **data)
    if usage.available_gb > settings.disk_fail_gb:
        return warned(f"{detail} (low)", "Monitor usage, consider cleanup", **data)
    return failed(
        f"{detail} (critical)",
        "Check usage: sudo du -sh /var/lib/rancher/k3s /var/log",
        **data,
    )


def disk_space() -> Probe:
    return Probe(name="disk-space", check=_check_disk, description="Disk space")


def _error_lines(lines: list[str]) -> list[str]:
    return [l for l in lines if ERROR_PATTERN.search(l) and ERROR_NOISE not in l]


def _check_service_logs(ctx: ProbeContext) -> Finding:
    service = ctx.settings.service
    window = ctx.settings.log_window
    errors = _error_lines(ctx.system.logs.query(service, window))
    if not errors:
        return passed(f"No errors since {window}")
    return warned(
        f"{len(errors)} error lines since {window}",
        f"Review with: sudo journalctl -u {service} --since '{window}' | grep -i error",
        error_lines=len(errors),
    )


def service_logs() -> Probe:
    return Probe(
        name="service-logs",
        check=_check_service_logs,
        severity=Severity.ADVISORY,
        description="Recent service log errors",
        best_effort=True,
    )


def _check_boot_logs(ctx: ProbeContext) -> Finding:
    service = ctx.settings.service
    errors = _error_lines(ctx.system.logs.boot(service))
    if not errors:
        return passed("No errors in boot logs")
    return warned(
        f"{len(errors)} error lines in boot logs",
        f"Review: sudo journalctl -u {service} -b | grep -i error",
        error_lines=len(errors),
    )


def boot_log_errors() -> Probe:
    return Probe(
        name="boot-log-errors",
        check=_check_boot_logs,
        severity=Severity.ADVISORY,
        description="Boot log errors",
        best_effort=True,
    )


def _check_corruption(ctx: ProbeContext) -> Finding:
    hits = [l for l in ctx.system.logs.boot() if CORRUPTION_PATTERN.search(l)]
    if not hits:
        return passed("No filesystem corruption warnings")
    return warned(
        f"{len(hits)} filesystem warnings in boot logs",
        "Review: sudo journalctl -b | grep -i corruption",
        matches=len(hits),
    )


def fs_corruption_signals() -> Probe:
    return Probe(
        name="fs-corruption-signals",
        check=_check_corruption,
        severity=Severity.ADVISORY,
        description="Filesystem corruption signals",
        best_effort=True,
    )


def _check_cgroup_memory(ctx: ProbeContext) -> Finding:
    if "memory" in ctx.system.host.cgroup_controllers():
        return passed("memory controller available (cgroup v2)")
    cmdline = ctx.system.host.kernel_cmdline().split()
    missing = [p for p in CGROUP_PARAMS if p not in cmdline]
    if not missing:
        return passed("cgroup memory accounting enabled")
    return failed(
        f"Boot parameters missing: {' '.join(missing)}",
        "Run: sudo edgenode-validate prep && sudo reboot",
    )


def cgroup_memory() -> Probe:
    return Probe(
        name="cgroup-memory",
        check=_check_cgroup_memory,
        description="cgroup memory accounting",
    )


def _check_swap(ctx: ProbeContext) -> Finding:
    devices = ctx.system.host.swap_devices()
    if not devices:
        return passed("Swap is off")
    return warned(
        f"Swap active on {', '.join(devices)}",
        "Run: sudo edgenode-validate prep",
    )


def swap_disabled() -> Probe:
    return Probe(
        name="swap-disabled",
        check=_check_swap,
        severity=Severity.ADVISORY,
        description="Swap disabled",
    )


def _check_datastore_state(ctx: ProbeContext) -> Finding:
    path = ctx.settings.datastore_path
    info = ctx.system.host.file_info(path)
    if info is None:
        return warned(f"Datastore not found at {path}")
    return passed(
        f"{info.size // 1024}KB, modified {info.modified_at:%Y-%m-%d %H:%M:%S}",
        size=info.size,
        modified_at=info.modified_at.isoformat(),
    )


def datastore_state() -> Probe:
    return Probe(
        name="datastore-state",
        check=_check_datastore_state,
        severity=Severity.ADVISORY,
        description="Datastore file state",
    )


def _check_datastore_integrity(ctx: ProbeContext) -> Finding:
    path = ctx.settings.datastore_path
    if not ctx.system.host.path_exists(path):
        return failed(f"Datastore not found at {path}")
    try:
        ctx.system.cluster.list_nodes()
    except CollaboratorError as exc:
        return failed(
            f"Datastore query failed, database may be corrupted: {exc}",
            f"Check: sudo {ctx.settings.service} check-config",
        )
    return passed("Datastore answers queries")


def datastore_integrity() -> Probe:
    return Probe(
        name="datastore-integrity",
        check=_check_datastore_integrity,
        description="Datastore integrity",
    )


def connectivity(expect_reachable: bool = True) -> Probe:
    """External reachability; a WARN when it does not match expectations."""

    def check(ctx: ProbeContext) -> Finding:
        target = ctx.settings.connectivity_target
        reachable = ctx.system.network.reachable(target)
        if reachable == expect_reachable:
            state = "reachable" if reachable else "unreachable"
            return passed(f"{target} is {state}", reachable=reachable)
        if reachable:
            return warned(
                f"{target} is still reachable",
                "Ensure the interface is down or the cable is unplugged",
                reachable=reachable,
            )
        return warned(f"{target} is unreachable", reachable=reachable)

    name = "connectivity" if expect_reachable else "connectivity-lost"
    return Probe(
        name=name,
        check=check,
        severity=Severity.ADVISORY,
        description="External connectivity",
        timeout=10.0,
    )


def host_prep() -> Probe:
    """Whether the OS preparation plan is fully applied, evaluated read-only."""

    def check(ctx: ProbeContext) -> Finding:
        from edgenode_validate.apply import ConfigApplier, prep_changes
        from edgenode_validate.platform import detect_platform

        applier = ConfigApplier(ctx.settings.backup_dir, ctx.system.services)
        pending = []
        for change in prep_changes(detect_platform()):
            try:
                satisfied = applier.is_satisfied(change)
            except ApplierPreconditionFailed as exc:
                pending.append(f"{change.name} ({exc.reason})")
                continue
            if satisfied is None:
                continue
            if not satisfied:
                pending.append(change.name)
        if pending:
            return warned(
                f"Not applied: {', '.join(pending)}",
                "Run: sudo edgenode-validate prep",
                pending=pending,
            )
        return passed("All preparation changes applied")

    return Probe(
        name="host-prep",
        check=check,
        severity=Severity.ADVISORY,
        description="OS preparation",
    )

