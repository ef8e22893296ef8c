"""Platform detection logic."""

from pathlib import Path

from .types import BoardFamily, BoardModel, OSType, Platform

# Newer Raspberry Pi OS releases moved the boot partition to /boot/firmware
CMDLINE_CANDIDATES = ("/boot/firmware/cmdline.txt", "/boot/cmdline.txt")


def _read_file(path: str) -> str | None:
    """Read file contents, return None if not found."""
    try:
        return Path(path).read_text().strip()
    except (FileNotFoundError, PermissionError):
        return None


def _detect_os() -> tuple[OSType, str]:
    """Detect OS type and version from /etc/os-release."""
    os_release = _read_file("/etc/os-release")
    if not os_release:
        return OSType.UNKNOWN, ""

    fields: dict[str, str] = {}
    for line in os_release.splitlines():
        if "=" in line:
            key, value = line.split("=", 1)
            fields[key.strip()] = value.strip().strip('"')

    os_id = fields.get("ID", "").lower()
    version = fields.get("VERSION_ID", "")
    # Raspberry Pi OS 64-bit reports ID=debian, the 32-bit one ID=raspbian
    if os_id == "raspbian" or Path("/etc/rpi-issue").exists():
        return OSType.RASPBERRY_PI_OS, version

    os_map = {"debian": OSType.DEBIAN, "ubuntu": OSType.UBUNTU}
    return os_map.get(os_id, OSType.UNKNOWN), version


def _detect_board() -> tuple[BoardFamily, BoardModel, str]:
    """Detect board family and model from the device tree."""
    model = (_read_file("/proc/device-tree/model") or "").replace("\x00", "")
    compatible = (_read_file("/proc/device-tree/compatible") or "").replace(
        "\x00", "\n"
    ).lower()
    lowered = model.lower()

    if "raspberry" in lowered or "bcm2" in compatible:
        family = BoardFamily.RASPBERRY_PI
        if "pi 5" in lowered:
            return family, BoardModel.RPI5, model
        if "pi 4" in lowered:
            return family, BoardModel.RPI4, model
        if "pi 3" in lowered:
            return family, BoardModel.RPI3, model
        return family, BoardModel.UNKNOWN, model

    if "rockchip" in compatible:
        return BoardFamily.ROCKCHIP, BoardModel.UNKNOWN, model

    if model or compatible:
        return BoardFamily.GENERIC, BoardModel.UNKNOWN, model

    return BoardFamily.UNKNOWN, BoardModel.UNKNOWN, model


def _detect_cmdline() -> str | None:
    for candidate in CMDLINE_CANDIDATES:
        if Path(candidate).is_file():
            return candidate
    return None


def detect_platform() -> Platform:
    """Detect full platform information."""
    os_type, os_version = _detect_os()
    board_family, board_model, model = _detect_board()

    kernel = _read_file("/proc/version")
    kernel_version = ""
    if kernel:
        parts = kernel.split()
        if len(parts) >= 3:
            kernel_version = parts[2]

    return Platform(
        os_type=os_type,
        board_family=board_family,
        board_model=board_model,
        os_version=os_version,
        kernel_version=kernel_version,
        model=model,
        cmdline_path=_detect_cmdline(),
    )
