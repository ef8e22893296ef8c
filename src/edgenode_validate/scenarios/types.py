"""Scenario step and run types."""

import hashlib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from edgenode_validate.verify.types import (
    CheckResult,
    CheckStatus,
    Finding,
    Probe,
    ProbeContext,
    Severity,
)

SCHEMA_VERSION = 1


class ScenarioStatus(Enum):
    IN_PROGRESS = "in_progress"
    AWAITING_MANUAL_ACTION = "awaiting_manual_action"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def terminal(self) -> bool:
        return self in (ScenarioStatus.COMPLETED, ScenarioStatus.ABANDONED)


class ScenarioVerdict(Enum):
    PASS = "pass"
    DEGRADED = "degraded"
    FAIL = "fail"

    @property
    def exit_code(self) -> int:
        return {
            ScenarioVerdict.PASS: 0,
            ScenarioVerdict.DEGRADED: 1,
            ScenarioVerdict.FAIL: 2,
        }[self]


@dataclass(frozen=True)
class AutomatedCheck:
    """Run a probe and record its outcome.

    ``critical`` defaults to the probe's severity. A failing check with
    ``abort_on_fail`` stops the scenario; only cleanup actions still run.
    """

    probe: Probe
    weight: float = 1.0
    critical: bool | None = None
    abort_on_fail: bool = False

    @property
    def name(self) -> str:
        return self.probe.name

    @property
    def is_critical(self) -> bool:
        if self.critical is not None:
            return self.critical
        return self.probe.severity == Severity.CRITICAL


@dataclass(frozen=True)
class ManualAction:
    """Pause the run until an operator performs ``description``.

    ``capture`` records host facts before the pause; ``confirm`` compares
    them with the host after resume and returns a Finding. A non-passing
    confirmation is recorded as a warning, never as a failure.
    """

    description: str
    token: str
    instructions: tuple[str, ...] = ()
    capture: Callable[[ProbeContext], Mapping[str, Any]] | None = None
    confirm: Callable[[ProbeContext, Mapping[str, Any]], Finding] | None = None

    @property
    def name(self) -> str:
        return f"manual:{self.token}"


@dataclass(frozen=True)
class Wait:
    seconds: float
    reason: str = ""

    @property
    def name(self) -> str:
        return f"wait:{self.seconds:g}s"


@dataclass(frozen=True)
class Action:
    """An automated step that changes something (deploy, delete, clean up).

    ``run`` returns facts to keep in the checkpoint, or None. ``always_run``
    steps execute even after the scenario was aborted.
    """

    name: str
    run: Callable[[ProbeContext], Mapping[str, Any] | None]
    description: str = ""
    always_run: bool = False


ScenarioStep = Union[AutomatedCheck, ManualAction, Wait, Action]


def step_kind(step: ScenarioStep) -> str:
    if isinstance(step, AutomatedCheck):
        return "check"
    if isinstance(step, ManualAction):
        return "manual"
    if isinstance(step, Wait):
        return "wait"
    return "action"


@dataclass(frozen=True)
class Scenario:
    """A named, ordered list of steps."""

    id: str
    title: str
    purpose: str
    steps: tuple[ScenarioStep, ...]
    alias: str = ""
    rationale: str = ""
    pass_threshold: float | None = None
    # Shown when the run fails
    common_causes: tuple[str, ...] = ()

    def __post_init__(self):
        names = [s.name for s in self.steps if not isinstance(s, Wait)]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"{self.id}: duplicate step names {duplicates}")

    @property
    def fingerprint(self) -> str:
        """Identify the step layout a checkpoint was written against."""
        layout = "\n".join(f"{step_kind(s)}:{s.name}" for s in self.steps)
        return hashlib.sha256(layout.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class StepResult:
    """The recorded outcome of one scenario step.

    Results with ``counted=False`` (waits, skipped steps after an abort) are
    kept for the audit trail and ignored by the verdict.
    """

    index: int
    kind: str
    result: CheckResult
    weight: float = 1.0
    critical: bool = False
    counted: bool = True

    @property
    def status(self) -> CheckStatus:
        return self.result.status

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "kind": self.kind,
            "weight": self.weight,
            "critical": self.critical,
            "counted": self.counted,
            "result": self.result.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "StepResult":
        return cls(
            index=int(raw["index"]),
            kind=str(raw["kind"]),
            result=CheckResult.from_dict(raw["result"]),
            weight=float(raw.get("weight", 1.0)),
            critical=bool(raw.get("critical", False)),
            counted=bool(raw.get("counted", True)),
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ScenarioRun:
    """Persisted state of one execution of a scenario."""

    scenario_id: str
    run_id: str
    started_at: datetime
    updated_at: datetime
    fingerprint: str
    status: ScenarioStatus = ScenarioStatus.IN_PROGRESS
    last_completed_step: int = -1
    verdict: ScenarioVerdict | None = None
    resume_token: str | None = None
    checkpoint: dict[str, Any] = field(default_factory=dict)
    results: list[StepResult] = field(default_factory=list)
    aborted: bool = False
    abandon_reason: str | None = None
    completed_at: datetime | None = None

    @property
    def next_step(self) -> int:
        return self.last_completed_step + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": SCHEMA_VERSION,
            "scenario_id": self.scenario_id,
            "run_id": self.run_id,
            "started_at": _iso(self.started_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
            "fingerprint": self.fingerprint,
            "status": self.status.value,
            "verdict": self.verdict.value if self.verdict else None,
            "last_completed_step": self.last_completed_step,
            "resume_token": self.resume_token,
            "aborted": self.aborted,
            "abandon_reason": self.abandon_reason,
            "checkpoint": self.checkpoint,
            "results": [r.to_dict() for r in self.results],
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ScenarioRun":
        """Rebuild a run from its JSON form.

        Raises:
            KeyError, ValueError, TypeError: The record is malformed
        """
        if raw.get("schema") != SCHEMA_VERSION:
            raise ValueError(f"unsupported schema version {raw.get('schema')!r}")
        checkpoint = raw.get("checkpoint") or {}
        if not isinstance(checkpoint, dict):
            raise TypeError("checkpoint is not an object")
        verdict = raw.get("verdict")
        return cls(
            scenario_id=str(raw["scenario_id"]),
            run_id=str(raw["run_id"]),
            started_at=_parse_iso(raw["started_at"]),
            updated_at=_parse_iso(raw["updated_at"]),
            completed_at=_parse_iso(raw.get("completed_at")),
            fingerprint=str(raw["fingerprint"]),
            status=ScenarioStatus(raw["status"]),
            verdict=ScenarioVerdict(verdict) if verdict else None,
            last_completed_step=int(raw["last_completed_step"]),
            resume_token=raw.get("resume_token"),
            aborted=bool(raw.get("aborted", False)),
            abandon_reason=raw.get("abandon_reason"),
            checkpoint=checkpoint,
            results=[StepResult.from_dict(r) for r in raw.get("results", [])],
        )


# Weighted score per outcome when no critical check failed
STATUS_SCORES = {
    CheckStatus.PASS: 1.0,
    CheckStatus.WARN: 0.5,
    CheckStatus.SKIP: 0.5,
    CheckStatus.FAIL: 0.0,
}


def compute_scenario_verdict(
    results: list[StepResult], threshold: float, aborted: bool = False
) -> ScenarioVerdict:
    """Fold step results into a verdict.

    A critical failure or an aborted run fails. Any other failure caps the
    run at degraded, whatever the score. Otherwise the weighted score must
    reach ``threshold`` to pass; a run without counted results is degraded.
    """
    counted = [r for r in results if r.counted]
    if aborted or any(r.critical and r.status == CheckStatus.FAIL for r in counted):
        return ScenarioVerdict.FAIL
    if any(r.status == CheckStatus.FAIL for r in counted):
        return ScenarioVerdict.DEGRADED
    total = sum(r.weight for r in counted)
    if total <= 0:
        return ScenarioVerdict.DEGRADED
    score = sum(r.weight * STATUS_SCORES[r.status] for r in counted) / total
    return ScenarioVerdict.PASS if score >= threshold else ScenarioVerdict.DEGRADED
