"""
Prepare the host OS for a single-node edge cluster.

The persistent configuration (boot parameters, swap, journald, modules and
sysctl drop-ins) goes through the ConfigApplier so every edited file is
backed up once before it is touched. The runtime side is plain pyinfra.

Usage:
    pyinfra @local deploys/os_prep.py --data state_dir=/var/lib/edgenode-validate
"""

from dataclasses import fields

from pyinfra import logger
from pyinfra.api.deploy import deploy
from pyinfra.context import host
from pyinfra.operations import python, server, systemd

from edgenode_validate.apply import (
    KERNEL_MODULES,
    SYSCTL_SETTINGS,
    AppliedChange,
    ConfigApplier,
    ConfigChange,
    prep_changes,
)
from edgenode_validate.config import Settings
from edgenode_validate.errors import ApplierPreconditionFailed
from edgenode_validate.platform import detect_platform
from edgenode_validate.system import SystemdServices


def apply_plan(
    applier: ConfigApplier,
    changes: list[ConfigChange],
    applied: dict[str, AppliedChange],
) -> None:
    """Apply each change in order; optional changes with no target are skipped."""
    for change in changes:
        try:
            result = applier.apply(change)
        except ApplierPreconditionFailed as exc:
            if not change.optional:
                raise
            logger.warning(f"Skipping {change.name}: {exc.reason}")
            continue
        applied[change.name] = result
        if result.applied:
            logger.info(f"{change.name}: updated {change.target}")
        else:
            logger.info(f"{change.name}: already configured")

    reboot = [r.name for r in applied.values() if r.applied and r.requires_restart]
    if reboot:
        logger.warning(f"Reboot required for: {', '.join(reboot)}")


def needs_reload(applied: dict[str, AppliedChange], unit: str) -> bool:
    return any(r.applied and r.reload_unit == unit for r in applied.values())


@deploy("Prepare OS for edge cluster")
def prepare_os(settings: Settings) -> None:
    applied: dict[str, AppliedChange] = {}
    applier = ConfigApplier(
        settings.backup_dir, SystemdServices(timeout=settings.command_timeout)
    )

    python.call(
        name="Apply persistent configuration",
        function=apply_plan,
        applier=applier,
        changes=prep_changes(detect_platform()),
        applied=applied,
    )

    server.shell(
        name="Disable swap for the running system",
        commands=["swapoff -a"],
    )

    for module in KERNEL_MODULES:
        server.modprobe(
            name=f"Load {module} kernel module",
            module=module,
        )

    for key, value in SYSCTL_SETTINGS.items():
        server.sysctl(
            name=f"Set {key}",
            key=key,
            value=int(value),
        )

    systemd.service(
        name="Restart journald to apply size limits",
        service="systemd-journald",
        restarted=True,
        _if=lambda: needs_reload(applied, "systemd-journald"),
    )


if __name__ == "__main__":
    settings = Settings.from_data(
        {f.name: host.data.get(f.name) for f in fields(Settings)}
    )
    logger.info(f"Backups go to {settings.backup_dir}")
    prepare_os(settings=settings, _sudo=True)
