"""Resumable execution of failure scenarios."""

import logging
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone

from edgenode_validate.errors import (
    CheckpointCorrupt,
    NoScenarioRun,
    ResumeTokenMismatch,
    ScenarioAlreadyActive,
    ScenarioNotResumable,
    ScenarioResumeSanityMismatch,
    ScenarioResumeWithoutCheckpoint,
    UnknownScenario,
)
from edgenode_validate.verify.runner import run_probe, with_notes
from edgenode_validate.verify.types import (
    CheckResult,
    CheckStatus,
    Probe,
    ProbeContext,
    Severity,
)

from .store import CheckpointStore
from .types import (
    Action,
    AutomatedCheck,
    ManualAction,
    Scenario,
    ScenarioRun,
    ScenarioStatus,
    StepResult,
    Wait,
    compute_scenario_verdict,
    step_kind,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ScenarioSummary:
    """Listing entry: a scenario with its current run, if any."""

    scenario: Scenario
    run: ScenarioRun | None = None
    error: str | None = None


class ScenarioEngine:
    """Drive scenarios step by step, persisting after every step.

    Every lifecycle call holds the scenario's lock, so two invocations on
    the same host cannot interleave writes to one checkpoint.
    """

    def __init__(
        self,
        store: CheckpointStore,
        context: ProbeContext,
        catalog: Mapping[str, Scenario],
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
        default_threshold: float = 0.9,
    ):
        self.store = store
        self.context = context
        self.catalog = dict(catalog)
        self.sleep = sleep
        self.clock = clock
        self.default_threshold = default_threshold

    # Lookup

    def scenario(self, key: str) -> Scenario:
        """Resolve a scenario by id or alias."""
        if key in self.catalog:
            return self.catalog[key]
        for scenario in self.catalog.values():
            if scenario.alias and scenario.alias == key:
                return scenario
        raise UnknownScenario(key)

    def pending_action(self, run: ScenarioRun) -> ManualAction | None:
        """The manual action a run is waiting for, if any."""
        if run.status != ScenarioStatus.AWAITING_MANUAL_ACTION:
            return None
        step = self.scenario(run.scenario_id).steps[run.last_completed_step]
        return step if isinstance(step, ManualAction) else None

    def summaries(self) -> list[ScenarioSummary]:
        entries = []
        for scenario in self.catalog.values():
            try:
                run = self.store.load(scenario.id)
            except CheckpointCorrupt as exc:
                entries.append(ScenarioSummary(scenario, error=exc.reason))
                continue
            entries.append(ScenarioSummary(scenario, run))
        return entries

    # Lifecycle

    def start(self, key: str) -> ScenarioRun:
        """Begin a new run of a scenario.

        Raises:
            UnknownScenario: No such scenario
            ScenarioAlreadyActive: A run is in progress or awaiting an action
            CheckpointCorrupt: The current record is unreadable; abandon it
            ScenarioBusy: Another process holds the scenario lock
        """
        scenario = self.scenario(key)
        with self.store.lock(scenario.id):
            previous = self.store.load(scenario.id)
            if previous is not None:
                if not previous.status.terminal:
                    raise ScenarioAlreadyActive(scenario.id, previous.status.value)
                self.store.archive(previous)

            now = self.clock()
            run = ScenarioRun(
                scenario_id=scenario.id,
                run_id=uuid.uuid4().hex[:12],
                started_at=now,
                updated_at=now,
                fingerprint=scenario.fingerprint,
            )
            self._save(run)
            logger.info("Started %s (run %s)", scenario.id, run.run_id)
            return self._execute(scenario, run)

    def resume(self, key: str, token: str | None = None) -> ScenarioRun:
        """Continue a run after its manual action, or after a crash.

        Raises:
            ScenarioResumeWithoutCheckpoint: No run was started
            ScenarioNotResumable: The run already finished
            ResumeTokenMismatch: ``token`` is not the pending action's token
            CheckpointCorrupt: The record is unreadable or does not match
                the scenario definition
        """
        scenario = self.scenario(key)
        with self.store.lock(scenario.id):
            run = self.store.load(scenario.id)
            if run is None:
                raise ScenarioResumeWithoutCheckpoint(scenario.id)
            if run.status.terminal:
                raise ScenarioNotResumable(scenario.id, run.status.value)
            self._check_layout(scenario, run)

            if run.status == ScenarioStatus.AWAITING_MANUAL_ACTION:
                if token is not None and token != run.resume_token:
                    raise ResumeTokenMismatch(scenario.id, run.resume_token, token)
                self._confirm_manual_action(scenario, run)
            else:
                logger.warning(
                    "Resuming interrupted run of %s at step %d",
                    scenario.id,
                    run.next_step,
                )
            return self._execute(scenario, run)

    def status(self, key: str) -> ScenarioRun:
        """Return the stored run without changing it.

        Raises:
            NoScenarioRun: Nothing recorded
            CheckpointCorrupt: The record is unreadable
        """
        scenario = self.scenario(key)
        run = self.store.load(scenario.id)
        if run is None:
            raise NoScenarioRun(scenario.id)
        return run

    def abandon(self, key: str, reason: str) -> ScenarioRun:
        """Give up on the current run; it can never be resumed.

        An unreadable record is moved aside and replaced by an abandoned one.
        """
        scenario = self.scenario(key)
        with self.store.lock(scenario.id):
            try:
                run = self.store.load(scenario.id)
            except CheckpointCorrupt:
                moved = self.store.quarantine(scenario.id)
                now = self.clock()
                run = ScenarioRun(
                    scenario_id=scenario.id,
                    run_id=uuid.uuid4().hex[:12],
                    started_at=now,
                    updated_at=now,
                    fingerprint=scenario.fingerprint,
                    checkpoint={"corrupt_record": str(moved)},
                )
            else:
                if run is None:
                    raise NoScenarioRun(scenario.id)
                if run.status.terminal:
                    raise ScenarioNotResumable(scenario.id, run.status.value)

            run.status = ScenarioStatus.ABANDONED
            run.abandon_reason = reason
            run.resume_token = None
            run.completed_at = self.clock()
            self._save(run)
            logger.info("Abandoned %s: %s", scenario.id, reason)
            return run

    def clear(self, key: str) -> None:
        """Delete the record of a finished run.

        Raises:
            NoScenarioRun: Nothing recorded
            ScenarioAlreadyActive: The run is not finished; abandon it first
        """
        scenario = self.scenario(key)
        with self.store.lock(scenario.id):
            run = self.store.load(scenario.id)
            if run is None:
                raise NoScenarioRun(scenario.id)
            if not run.status.terminal:
                raise ScenarioAlreadyActive(scenario.id, run.status.value)
            self.store.delete(scenario.id)
            logger.info("Cleared %s", scenario.id)

    # Execution

    def _save(self, run: ScenarioRun) -> None:
        run.updated_at = self.clock()
        self.store.save(run)

    def _check_layout(self, scenario: Scenario, run: ScenarioRun) -> None:
        path = str(self.store.path_for(scenario.id))
        if run.fingerprint != scenario.fingerprint:
            raise CheckpointCorrupt(path, "scenario steps changed since the run started")
        if not -1 <= run.last_completed_step < len(scenario.steps):
            raise CheckpointCorrupt(
                path, f"step index {run.last_completed_step} out of range"
            )
        if run.status == ScenarioStatus.AWAITING_MANUAL_ACTION and not isinstance(
            scenario.steps[run.last_completed_step], ManualAction
        ):
            raise CheckpointCorrupt(path, "awaiting a step that is not a manual action")

    def _context(self, run: ScenarioRun) -> ProbeContext:
        return with_notes(self.context, dict(run.checkpoint))

    def _record(
        self,
        run: ScenarioRun,
        index: int,
        kind: str,
        result: CheckResult,
        weight: float = 1.0,
        critical: bool = False,
        counted: bool = True,
    ) -> None:
        run.results.append(
            StepResult(
                index=index,
                kind=kind,
                result=result,
                weight=weight,
                critical=critical,
                counted=counted,
            )
        )
        if result.data:
            run.checkpoint[result.name] = dict(result.data)

    def _execute(self, scenario: Scenario, run: ScenarioRun) -> ScenarioRun:
        run.status = ScenarioStatus.IN_PROGRESS
        run.resume_token = None

        for index in range(run.next_step, len(scenario.steps)):
            step = scenario.steps[index]
            if run.aborted and not (isinstance(step, Action) and step.always_run):
                self._skip(run, index, step)
            elif isinstance(step, AutomatedCheck):
                self._run_check(run, index, step)
            elif isinstance(step, Action):
                self._run_action(run, index, step)
            elif isinstance(step, Wait):
                self._wait(run, index, step)
            elif isinstance(step, ManualAction):
                self._await(scenario, run, index, step)
                return run
            run.last_completed_step = index
            self._save(run)

        threshold = scenario.pass_threshold
        if threshold is None:
            threshold = self.default_threshold
        run.verdict = compute_scenario_verdict(run.results, threshold, run.aborted)
        run.status = ScenarioStatus.COMPLETED
        run.completed_at = self.clock()
        self._save(run)
        logger.info("Completed %s: %s", scenario.id, run.verdict.value)
        return run

    def _skip(self, run: ScenarioRun, index: int, step) -> None:
        result = CheckResult(
            name=step.name,
            status=CheckStatus.SKIP,
            message="not run: scenario aborted",
            severity=Severity.ADVISORY,
            started_at=self.clock(),
        )
        self._record(run, index, step_kind(step), result, counted=False)

    def _run_check(self, run: ScenarioRun, index: int, step: AutomatedCheck) -> None:
        result = run_probe(step.probe, self._context(run), sleep=self.sleep)
        self._record(
            run,
            index,
            "check",
            result,
            weight=step.weight,
            critical=step.is_critical,
        )
        if step.abort_on_fail and result.status == CheckStatus.FAIL:
            logger.warning(
                "%s failed at %s, aborting: %s",
                run.scenario_id,
                step.name,
                result.message,
            )
            run.aborted = True

    def _run_action(self, run: ScenarioRun, index: int, step: Action) -> None:
        started_at = self.clock()
        t0 = time.monotonic()
        try:
            data = step.run(self._context(run)) or {}
        except Exception as exc:
            logger.warning("Action %s failed: %s", step.name, exc)
            logger.debug("Action %s traceback", step.name, exc_info=exc)
            result = CheckResult(
                name=step.name,
                status=CheckStatus.FAIL,
                message=str(exc),
                description=step.description,
                started_at=started_at,
                duration=time.monotonic() - t0,
            )
            if not step.always_run:
                run.aborted = True
        else:
            logger.info("%s: %s done", run.scenario_id, step.name)
            result = CheckResult(
                name=step.name,
                status=CheckStatus.PASS,
                message=step.description or "done",
                description=step.description,
                started_at=started_at,
                duration=time.monotonic() - t0,
                data=dict(data),
            )
        self._record(run, index, "action", result, critical=True)

    def _wait(self, run: ScenarioRun, index: int, step: Wait) -> None:
        started_at = self.clock()
        logger.info("Waiting %gs: %s", step.seconds, step.reason or "settle")
        self.sleep(step.seconds)
        result = CheckResult(
            name=step.name,
            status=CheckStatus.PASS,
            message=step.reason,
            severity=Severity.ADVISORY,
            started_at=started_at,
            duration=step.seconds,
        )
        self._record(run, index, "wait", result, counted=False)

    def _await(
        self, scenario: Scenario, run: ScenarioRun, index: int, step: ManualAction
    ) -> None:
        if step.capture is not None:
            try:
                run.checkpoint[step.name] = dict(step.capture(self._context(run)))
            except Exception as exc:
                # The confirmation will have nothing to compare against
                logger.warning("Could not capture state before %s: %s", step.name, exc)
        run.status = ScenarioStatus.AWAITING_MANUAL_ACTION
        run.resume_token = step.token
        run.last_completed_step = index
        self._save(run)
        logger.info(
            "%s awaiting manual action %r (token %s)",
            scenario.id,
            step.description,
            step.token,
        )

    def _confirm_manual_action(self, scenario: Scenario, run: ScenarioRun) -> None:
        index = run.last_completed_step
        step = scenario.steps[index]
        if step.confirm is None:
            return
        captured = run.checkpoint.get(step.name, {})

        probe = Probe(
            name=f"{step.name}:confirmed",
            check=lambda ctx: step.confirm(ctx, captured),
            severity=Severity.ADVISORY,
            description=f"Confirm: {step.description}",
            best_effort=True,
        )
        result = run_probe(probe, self._context(run), sleep=self.sleep)
        if result.status != CheckStatus.PASS:
            mismatch = ScenarioResumeSanityMismatch(
                f"{scenario.id}: {step.description}: {result.message}"
            )
            logger.warning("%s", mismatch)
        self._record(run, index, "manual", result, critical=False)


def verdict_exit_code(run: ScenarioRun) -> int:
    """Exit status describing a stored run."""
    if run.status == ScenarioStatus.ABANDONED:
        return 4
    if run.status == ScenarioStatus.AWAITING_MANUAL_ACTION:
        return 10
    if run.status == ScenarioStatus.IN_PROGRESS or run.verdict is None:
        return 3
    return run.verdict.exit_code
