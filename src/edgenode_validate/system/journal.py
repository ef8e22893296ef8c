"""Log collaborator backed by journalctl.

Lines are returned verbatim. Callers only ever scan them for patterns.
"""

from .shell import run_command
from .types import CollaboratorError


class JournalLogs:
    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def _lines(self, args: list[str]) -> list[str]:
        result = run_command(["journalctl", "--no-pager", "-q", *args], self.timeout)
        if not result.ok:
            raise CollaboratorError(f"journalctl failed: {result.stderr}", result.stdout)
        return result.stdout.splitlines()

    def query(self, unit: str, since: str) -> list[str]:
        """Lines logged by ``unit`` since a journalctl time expression."""
        return self._lines(["-u", unit, "--since", since])

    def boot(self, unit: str | None = None) -> list[str]:
        """Lines logged during the current boot, optionally for one unit."""
        args = ["-b"]
        if unit:
            args += ["-u", unit]
        return self._lines(args)
