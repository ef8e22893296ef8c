"""Service-state collaborator backed by systemctl."""

from .shell import run_command
from .types import CollaboratorError, EnablementState, ServiceState

_ENABLED_STATES = {"enabled", "enabled-runtime", "static", "alias", "indirect"}
_DISABLED_STATES = {"disabled", "masked", "masked-runtime", "linked"}


class SystemdServices:
    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def is_active(self, name: str) -> ServiceState:
        result = run_command(["systemctl", "is-active", name], self.timeout)
        state = result.stdout.splitlines()[0] if result.stdout else ""
        if state == "active":
            return ServiceState.ACTIVE
        if state in ("inactive", "failed", "activating", "deactivating"):
            return ServiceState.INACTIVE
        return ServiceState.UNKNOWN

    def is_enabled(self, name: str) -> EnablementState:
        result = run_command(["systemctl", "is-enabled", name], self.timeout)
        state = result.stdout.splitlines()[0] if result.stdout else ""
        if state in _ENABLED_STATES:
            return EnablementState.ENABLED
        if state in _DISABLED_STATES:
            return EnablementState.DISABLED
        return EnablementState.UNKNOWN

    def set_enabled(self, name: str, enabled: bool) -> None:
        verb = "enable" if enabled else "disable"
        result = run_command(["systemctl", verb, name], self.timeout)
        if not result.ok:
            raise CollaboratorError(
                f"systemctl {verb} {name} failed: {result.stderr}", result.stdout
            )
