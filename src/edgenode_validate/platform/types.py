"""Platform type definitions."""

from dataclasses import dataclass
from enum import Enum, auto


class BoardFamily(Enum):
    """Single-board computer family."""

    RASPBERRY_PI = auto()
    ROCKCHIP = auto()
    GENERIC = auto()
    UNKNOWN = auto()


class BoardModel(Enum):
    """Specific board model."""

    RPI3 = auto()
    RPI4 = auto()
    RPI5 = auto()
    UNKNOWN = auto()


class OSType(Enum):
    """Operating system type."""

    RASPBERRY_PI_OS = auto()
    DEBIAN = auto()
    UBUNTU = auto()
    UNKNOWN = auto()


@dataclass(frozen=True)
class Platform:
    """Detected platform information."""

    os_type: OSType
    board_family: BoardFamily
    board_model: BoardModel
    os_version: str = ""
    kernel_version: str = ""
    model: str = ""  # /proc/device-tree/model, e.g. "Raspberry Pi 4 Model B Rev 1.4"
    cmdline_path: str | None = None  # boot parameters file, if the board has one

    def __str__(self) -> str:
        return f"{self.board_family.name}/{self.board_model.name} on {self.os_type.name}"
