"""Subprocess plumbing shared by the collaborators."""

import logging
import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .types import CollaboratorError, CommandUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_command(
    args: Sequence[str],
    timeout: float,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run a command without a shell.

    Args:
        args: Program and arguments
        timeout: Seconds before the command is killed
        env: Extra environment variables layered over the current ones

    Raises:
        CommandUnavailable: The program is not installed
        CollaboratorError: The command timed out
    """
    program = args[0]
    if shutil.which(program) is None:
        raise CommandUnavailable(program)

    full_env = None
    if env:
        full_env = {**os.environ, **env}

    logger.debug("Running %s", " ".join(args))
    try:
        proc = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            timeout=timeout,
            env=full_env,
        )
    except subprocess.TimeoutExpired as exc:
        raise CollaboratorError(
            f"{program} timed out after {timeout:g}s", output=str(exc.stdout or "")
        ) from exc

    return CommandResult(proc.returncode, proc.stdout.strip(), proc.stderr.strip())
