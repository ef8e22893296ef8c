"""Resource-metrics collaborator reading /proc and the filesystem."""

import os
import shutil
from datetime import datetime, timezone
from pathlib import Path

from .types import BootState, CollaboratorError, DiskUsage, FileInfo, MemoryUsage


def _read_file(path: Path) -> str | None:
    """Read file contents, return None if not found."""
    try:
        return path.read_text().strip()
    except (FileNotFoundError, PermissionError):
        return None


def parse_meminfo(content: str) -> MemoryUsage:
    """Compute used memory the way ``free`` does (total - available)."""
    values: dict[str, int] = {}
    for line in content.splitlines():
        key, _, rest = line.partition(":")
        parts = rest.split()
        if parts and parts[0].isdigit():
            values[key.strip()] = int(parts[0])

    if "MemTotal" not in values:
        raise CollaboratorError("MemTotal missing from /proc/meminfo")
    total_kb = values["MemTotal"]
    available_kb = values.get("MemAvailable")
    if available_kb is None:
        available_kb = (
            values.get("MemFree", 0) + values.get("Buffers", 0) + values.get("Cached", 0)
        )
    return MemoryUsage(total_mb=total_kb // 1024, used_mb=(total_kb - available_kb) // 1024)


class HostMetrics:
    def __init__(self, proc_root: Path | str = "/proc"):
        self.proc_root = Path(proc_root)

    def memory(self) -> MemoryUsage:
        content = _read_file(self.proc_root / "meminfo")
        if content is None:
            raise CollaboratorError("/proc/meminfo is not readable")
        return parse_meminfo(content)

    def disk(self, mount: str = "/") -> DiskUsage:
        usage = shutil.disk_usage(mount)
        gib = 1024**3
        return DiskUsage(
            mount=mount, total_gb=usage.total / gib, available_gb=usage.free / gib
        )

    def boot_state(self) -> BootState:
        uptime = _read_file(self.proc_root / "uptime")
        if uptime is None:
            raise CollaboratorError("/proc/uptime is not readable")
        boot_id = _read_file(self.proc_root / "sys/kernel/random/boot_id")
        return BootState(boot_id=boot_id, uptime_seconds=float(uptime.split()[0]))

    def kernel_cmdline(self) -> str:
        content = _read_file(self.proc_root / "cmdline")
        if content is None:
            raise CollaboratorError("/proc/cmdline is not readable")
        return content

    def swap_devices(self) -> list[str]:
        content = _read_file(self.proc_root / "swaps")
        if content is None:
            raise CollaboratorError("/proc/swaps is not readable")
        # First line is the column header
        return [line.split()[0] for line in content.splitlines()[1:] if line.strip()]

    def cgroup_controllers(self) -> set[str]:
        """Controllers available on the unified (v2) hierarchy, if mounted."""
        content = _read_file(Path("/sys/fs/cgroup/cgroup.controllers"))
        return set(content.split()) if content else set()

    def path_exists(self, path: str) -> bool:
        return os.path.exists(path)

    def file_info(self, path: str) -> FileInfo | None:
        try:
            st = os.stat(path)
        except FileNotFoundError:
            return None
        return FileInfo(
            path=path,
            size=st.st_size,
            modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )
