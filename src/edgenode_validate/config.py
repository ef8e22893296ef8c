"""Runtime settings."""

from dataclasses import dataclass, fields
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    """Tunables for probes, scenarios and host preparation.

    Defaults match a single-node K3s install on a 2GB Raspberry Pi.
    """

    service: str = "k3s"
    kubectl: str = "kubectl"
    kubeconfig: str = "/etc/rancher/k3s/k3s.yaml"
    datastore_path: str = "/var/lib/rancher/k3s/server/db/state.db"
    state_dir: Path = Path("/var/lib/edgenode-validate")

    # Memory used (MB) above which the host is flagged
    memory_warn_mb: int = 600
    memory_fail_mb: int = 800
    # Root filesystem free space (GB) below which the host is flagged
    disk_warn_gb: int = 5
    disk_fail_gb: int = 2
    disk_mount: str = "/"

    log_window: str = "5 minutes ago"
    connectivity_target: str = "8.8.8.8"

    command_timeout: float = 10.0
    workers: int = 4

    settle_seconds: float = 30.0
    recovery_bound_seconds: float = 30.0
    pass_threshold: float = 0.9

    dns_test_image: str = "busybox:1.36"

    @property
    def scenario_dir(self) -> Path:
        return Path(self.state_dir) / "scenarios"

    @property
    def backup_dir(self) -> Path:
        return Path(self.state_dir) / "backups"

    def as_data(self) -> dict[str, str]:
        """Flatten settings to strings for ``pyinfra --data`` arguments."""
        return {f.name: str(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_data(cls, data: dict) -> "Settings":
        """Rebuild settings from ``pyinfra --data`` values, ignoring unknown keys."""
        kwargs = {}
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            default = getattr(cls, f.name)
            raw = data[f.name]
            if isinstance(default, Path):
                kwargs[f.name] = Path(raw)
            elif isinstance(default, bool):
                kwargs[f.name] = str(raw).lower() in ("1", "true", "yes")
            elif isinstance(default, int):
                kwargs[f.name] = int(raw)
            elif isinstance(default, float):
                kwargs[f.name] = float(raw)
            else:
                kwargs[f.name] = str(raw)
        return cls(**kwargs)
