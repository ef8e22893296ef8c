"""Durable scenario checkpoints: one JSON document per scenario."""

import fcntl
import json
import logging
import os
import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from edgenode_validate.errors import CheckpointCorrupt, ScenarioBusy
from edgenode_validate.fsutil import atomic_write

from .types import ScenarioRun

logger = logging.getLogger(__name__)

_SCENARIO_ID = re.compile(r"^[a-z0-9][a-z0-9-]*$")


class CheckpointStore:
    """Checkpoint files under ``root``.

    ``<root>/<scenario-id>.json`` holds the current run. Finished runs that
    are replaced by a new start are moved to ``<root>/history/``.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def history_dir(self) -> Path:
        return self.root / "history"

    def path_for(self, scenario_id: str) -> Path:
        if not _SCENARIO_ID.match(scenario_id):
            raise ValueError(f"Invalid scenario id: {scenario_id!r}")
        return self.root / f"{scenario_id}.json"

    def load(self, scenario_id: str) -> ScenarioRun | None:
        """Return the current run, or None when no run was ever started.

        Raises:
            CheckpointCorrupt: The file exists but cannot be trusted
        """
        path = self.path_for(scenario_id)
        try:
            text = path.read_text()
        except FileNotFoundError:
            return None

        try:
            raw = json.loads(text)
            if not isinstance(raw, dict):
                raise TypeError("top level is not an object")
            run = ScenarioRun.from_dict(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Checkpoint %s is unreadable: %s", path, exc)
            raise CheckpointCorrupt(str(path), str(exc)) from exc

        if run.scenario_id != scenario_id:
            raise CheckpointCorrupt(
                str(path), f"belongs to scenario {run.scenario_id!r}"
            )
        return run

    def save(self, run: ScenarioRun) -> Path:
        path = self.path_for(run.scenario_id)
        self.root.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(run.to_dict(), indent=2, sort_keys=True) + "\n"
        atomic_write(path, payload.encode(), mode=0o600)
        return path

    def archive(self, run: ScenarioRun) -> Path:
        """Move the current record of a finished run into history."""
        source = self.path_for(run.scenario_id)
        self.history_dir.mkdir(parents=True, exist_ok=True)
        target = self.history_dir / f"{run.scenario_id}-{run.run_id}.json"
        os.replace(source, target)
        logger.debug("Archived %s to %s", source, target)
        return target

    def quarantine(self, scenario_id: str) -> Path:
        """Move an unreadable record aside, keeping it for inspection."""
        source = self.path_for(scenario_id)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        target = source.with_name(f"{source.name}.corrupt-{stamp}")
        os.replace(source, target)
        logger.warning("Moved corrupt checkpoint %s to %s", source, target)
        return target

    def delete(self, scenario_id: str) -> None:
        self.path_for(scenario_id).unlink(missing_ok=True)

    @contextmanager
    def lock(self, scenario_id: str) -> Iterator[None]:
        """Hold an exclusive lock on one scenario for the duration.

        Raises:
            ScenarioBusy: Another process holds the lock
        """
        self.path_for(scenario_id)
        self.root.mkdir(parents=True, exist_ok=True)
        lock_path = self.root / f".{scenario_id}.lock"
        with open(lock_path, "a") as handle:
            try:
                fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as exc:
                raise ScenarioBusy(scenario_id) from exc
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)
