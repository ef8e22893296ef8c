"""
OS preparation plan for a single-node edge cluster.

Constraints the plan targets: low memory, SD card longevity and power-loss
resilience. The runtime side (swapoff, modprobe, sysctl) lives in the pyinfra
deploy; this module only describes the persistent configuration.
"""

from edgenode_validate.platform import Platform

from .changes import (
    CommentOutLines,
    ConfigChange,
    DropInFile,
    JournaldLimits,
    KernelCmdlineParams,
    KeyValueLine,
    ServiceEnablement,
)

CGROUP_BOOT_PARAMS = ("cgroup_enable=cpuset", "cgroup_memory=1", "cgroup_enable=memory")

KERNEL_MODULES = ("overlay", "br_netfilter")

SYSCTL_SETTINGS = {
    "net.bridge.bridge-nf-call-iptables": "1",
    "net.bridge.bridge-nf-call-ip6tables": "1",
    "net.ipv4.ip_forward": "1",
}

JOURNALD_LIMITS = {
    # Total journal size; protects the SD card from log wear
    "SystemMaxUse": "100M",
    "SystemMaxFileSize": "10M",
}

MODULES_CONF = """# Kernel modules required by the cluster, loaded at boot

# Overlay filesystem for container layers
overlay

# Bridge netfilter for pod networking
br_netfilter
"""


def _sysctl_conf() -> str:
    lines = ["# Bridge traffic filtering and IP forwarding for pod networking"]
    lines += [f"{key} = {value}" for key, value in SYSCTL_SETTINGS.items()]
    return "\n".join(lines) + "\n"


def prep_changes(platform: Platform) -> list[ConfigChange]:
    """Return the persistent configuration changes, in application order."""
    changes: list[ConfigChange] = [
        ServiceEnablement(
            name="dphys-swapfile-disabled",
            unit="dphys-swapfile",
            enabled=False,
            optional=True,
        ),
        CommentOutLines(
            name="fstab-swap",
            path="/etc/fstab",
            pattern=r"\bswap\b",
            optional=True,
        ),
        KeyValueLine(
            name="dphys-swapsize",
            path="/etc/dphys-swapfile",
            key="CONF_SWAPSIZE",
            value="0",
            optional=True,
        ),
    ]

    if platform.cmdline_path:
        changes.append(
            KernelCmdlineParams(
                name="cgroup-boot-params",
                path=platform.cmdline_path,
                params=CGROUP_BOOT_PARAMS,
            )
        )

    changes += [
        JournaldLimits(
            name="journald-limits",
            path="/etc/systemd/journald.conf",
            section="Journal",
            values=JOURNALD_LIMITS,
            optional=True,
        ),
        DropInFile(
            name="kernel-modules",
            path="/etc/modules-load.d/k3s.conf",
            content=MODULES_CONF,
        ),
        DropInFile(
            name="sysctl-networking",
            path="/etc/sysctl.d/99-k3s.conf",
            content=_sysctl_conf(),
        ),
    ]
    return changes
