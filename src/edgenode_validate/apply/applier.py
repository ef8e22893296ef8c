"""Backup-before-mutate application of configuration changes."""

import logging
from dataclasses import dataclass
from pathlib import Path

from edgenode_validate.errors import ApplierPartialState, ApplierPreconditionFailed
from edgenode_validate.fsutil import atomic_write, flatten_path
from edgenode_validate.system import (
    CollaboratorError,
    CommandUnavailable,
    EnablementState,
)
from edgenode_validate.system.systemd import SystemdServices

from .changes import ConfigChange, FileChange, ServiceEnablement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppliedChange:
    """What applying a ConfigChange did."""

    name: str
    applied: bool
    already_satisfied: bool
    requires_restart: bool
    backup_path: Path | None = None
    reload_unit: str | None = None


class ConfigApplier:
    """Apply changes idempotently, snapshotting each target once.

    The first backup of a target is authoritative and never overwritten, so
    re-running a plan cannot replace the pristine copy with an edited one.
    """

    def __init__(self, backup_dir: Path, services: SystemdServices | None = None):
        self.backup_dir = Path(backup_dir)
        self.services = services

    def backup_path_for(self, target: str) -> Path:
        return self.backup_dir / f"{flatten_path(target)}.bak"

    def _existing_backup(self, target: str) -> Path | None:
        path = self.backup_path_for(target)
        return path if path.exists() else None

    def is_satisfied(self, change: ConfigChange) -> bool | None:
        """Read-only evaluation of a change.

        Returns None for an optional change whose target is absent.

        Raises:
            ApplierPreconditionFailed: A required target is missing
        """
        try:
            if isinstance(change, FileChange):
                current = self._read(change)
                if current is None:
                    return False
                return change.render(current) == current
            if isinstance(change, ServiceEnablement):
                return self._service_state(change) == self._wanted(change)
        except ApplierPreconditionFailed:
            if change.optional:
                return None
            raise
        raise TypeError(f"Unsupported change type: {type(change).__name__}")

    def apply(self, change: ConfigChange) -> AppliedChange:
        """Bring the target to the desired state.

        Raises:
            ApplierPreconditionFailed: Target missing or unusable; nothing changed
            ApplierPartialState: Target does not hold what was written
        """
        if isinstance(change, FileChange):
            result = self._apply_file(change)
        elif isinstance(change, ServiceEnablement):
            result = self._apply_service(change)
        else:
            raise TypeError(f"Unsupported change type: {type(change).__name__}")

        if result.applied:
            logger.info("Applied %s (%s)", change.name, change.target)
        else:
            logger.debug("%s already satisfied", change.name)
        return result

    # Files

    def _read(self, change: FileChange) -> str | None:
        path = Path(change.path)
        if not path.exists():
            if change.create and path.parent.is_dir():
                return None
            missing = path if not change.create else path.parent
            raise ApplierPreconditionFailed(change.name, f"{missing} not found")
        try:
            return path.read_text()
        except (PermissionError, IsADirectoryError) as exc:
            raise ApplierPreconditionFailed(change.name, f"cannot read {path}: {exc}") from exc

    def _apply_file(self, change: FileChange) -> AppliedChange:
        path = Path(change.path)
        current = self._read(change)
        desired = change.render(current or "")

        if current is not None and desired == current:
            return AppliedChange(
                name=change.name,
                applied=False,
                already_satisfied=True,
                requires_restart=False,
                backup_path=self._existing_backup(change.path),
            )

        backup = None
        try:
            if current is not None:
                backup = self._backup_file(path)
            atomic_write(path, desired.encode())
        except OSError as exc:
            raise ApplierPreconditionFailed(change.name, f"cannot write {path}: {exc}") from exc

        if path.read_text() != desired:
            raise ApplierPartialState(f"{change.name}: {path} does not hold the new content")

        return AppliedChange(
            name=change.name,
            applied=True,
            already_satisfied=False,
            requires_restart=change.requires_restart,
            backup_path=backup,
            reload_unit=change.reload_unit,
        )

    def _backup_file(self, path: Path) -> Path:
        backup = self.backup_path_for(str(path))
        if backup.exists():
            return backup
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        atomic_write(backup, path.read_bytes(), mode=0o600)
        logger.debug("Backed up %s to %s", path, backup)
        return backup

    # Services

    def _wanted(self, change: ServiceEnablement) -> EnablementState:
        return EnablementState.ENABLED if change.enabled else EnablementState.DISABLED

    def _service_state(self, change: ServiceEnablement) -> EnablementState:
        if self.services is None:
            raise ApplierPreconditionFailed(change.name, "no service manager configured")
        try:
            state = self.services.is_enabled(change.unit)
        except (CommandUnavailable, CollaboratorError) as exc:
            raise ApplierPreconditionFailed(change.name, str(exc)) from exc
        if state == EnablementState.UNKNOWN:
            raise ApplierPreconditionFailed(change.name, f"{change.target} not installed")
        return state

    def _apply_service(self, change: ServiceEnablement) -> AppliedChange:
        current = self._service_state(change)
        wanted = self._wanted(change)
        if current == wanted:
            return AppliedChange(
                name=change.name,
                applied=False,
                already_satisfied=True,
                requires_restart=False,
                backup_path=self._existing_backup(change.target),
            )

        backup = self.backup_path_for(change.target)
        try:
            if not backup.exists():
                self.backup_dir.mkdir(parents=True, exist_ok=True)
                atomic_write(backup, f"{current.value}\n".encode(), mode=0o600)
            self.services.set_enabled(change.unit, change.enabled)
        except (OSError, CollaboratorError) as exc:
            raise ApplierPreconditionFailed(change.name, str(exc)) from exc

        if self._service_state(change) != wanted:
            raise ApplierPartialState(f"{change.name}: {change.target} is still {current.value}")

        return AppliedChange(
            name=change.name,
            applied=True,
            already_satisfied=False,
            requires_restart=change.requires_restart,
            backup_path=backup,
        )
