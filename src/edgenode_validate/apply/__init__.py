"""Idempotent host configuration with backup-before-mutate."""

from .applier import AppliedChange, ConfigApplier
from .changes import (
    CommentOutLines,
    ConfigChange,
    DropInFile,
    FileChange,
    IniKeys,
    JournaldLimits,
    KernelCmdlineParams,
    KeyValueLine,
    ServiceEnablement,
)
from .edge_prep import KERNEL_MODULES, SYSCTL_SETTINGS, prep_changes

__all__ = [
    "AppliedChange",
    "CommentOutLines",
    "ConfigApplier",
    "ConfigChange",
    "DropInFile",
    "FileChange",
    "IniKeys",
    "JournaldLimits",
    "KERNEL_MODULES",
    "KernelCmdlineParams",
    "KeyValueLine",
    "SYSCTL_SETTINGS",
    "ServiceEnablement",
    "prep_changes",
]
