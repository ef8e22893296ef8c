"""Connectivity collaborator."""

from .shell import run_command
from .types import CollaboratorError


class Network:
    def reachable(self, target: str, timeout: float = 2.0) -> bool:
        """Single ICMP echo to ``target``."""
        try:
            result = run_command(
                ["ping", "-c", "1", "-W", str(int(max(timeout, 1))), target],
                timeout=timeout + 3,
            )
        except CollaboratorError:
            return False
        return result.ok
