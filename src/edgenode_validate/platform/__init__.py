"""Platform detection for the managed host."""

from .detect import detect_platform
from .types import BoardFamily, BoardModel, OSType, Platform

__all__ = ["detect_platform", "BoardFamily", "BoardModel", "OSType", "Platform"]
