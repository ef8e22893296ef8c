"""Error taxonomy for probes, config changes and scenario runs."""


class EdgeValidateError(Exception):
    """Base class for all errors raised by edgenode-validate."""


# Probe errors. The probe runner turns these into outcomes; they never
# escape a checklist run.


class ProbeTimeout(EdgeValidateError):
    """A probe did not finish within its timeout."""

    def __init__(self, timeout: float):
        super().__init__(f"timed out after {timeout:g}s")
        self.timeout = timeout


class ProbeDependencyUnavailable(EdgeValidateError):
    """Something the probe needs (a command, a file) is not available."""


class ProbeCheckFailed(EdgeValidateError):
    """The probe ran and the observed state is wrong."""

    def __init__(self, message: str, remediation: str | None = None):
        super().__init__(message)
        self.remediation = remediation


# Config applier errors


class ApplierPreconditionFailed(EdgeValidateError):
    """The change target is missing or unusable; nothing was mutated."""

    def __init__(self, change: str, reason: str):
        super().__init__(f"{change}: {reason}")
        self.change = change
        self.reason = reason


class ApplierPartialState(EdgeValidateError):
    """A target does not hold the content that was just written to it."""


# Scenario errors


class ScenarioError(EdgeValidateError):
    """Base class for scenario lifecycle errors caused by the caller."""

    def __init__(self, scenario_id: str, message: str):
        super().__init__(message)
        self.scenario_id = scenario_id


class UnknownScenario(ScenarioError):
    def __init__(self, scenario_id: str):
        super().__init__(scenario_id, f"Unknown scenario: {scenario_id}")


class NoScenarioRun(ScenarioError):
    """No run is recorded for this scenario."""

    def __init__(self, scenario_id: str, message: str | None = None):
        super().__init__(scenario_id, message or f"No run recorded for {scenario_id}")


class ScenarioResumeWithoutCheckpoint(NoScenarioRun):
    """Nothing to resume: no run was ever started for this scenario."""

    def __init__(self, scenario_id: str):
        super().__init__(
            scenario_id,
            f"Nothing to resume for {scenario_id}: no run has been started",
        )


class ScenarioNotResumable(ScenarioError):
    """The stored run is terminal (completed or abandoned)."""

    def __init__(self, scenario_id: str, status: str):
        super().__init__(
            scenario_id,
            f"Run for {scenario_id} is already {status}; start the scenario again",
        )
        self.status = status


class ScenarioAlreadyActive(ScenarioError):
    def __init__(self, scenario_id: str, status: str):
        super().__init__(
            scenario_id,
            f"A run for {scenario_id} is already {status}; "
            "resume or abandon it first",
        )
        self.status = status


class ScenarioBusy(ScenarioError):
    """Another process holds the lock for this scenario."""

    def __init__(self, scenario_id: str):
        super().__init__(
            scenario_id, f"Scenario {scenario_id} is in use by another process"
        )


class ResumeTokenMismatch(ScenarioError):
    def __init__(self, scenario_id: str, expected: str | None, given: str):
        super().__init__(
            scenario_id,
            f"Resume token {given!r} does not match the pending action "
            f"({expected!r})",
        )


class ScenarioResumeSanityMismatch(EdgeValidateError):
    """The external action a run was waiting for did not plausibly happen.

    Recorded as a WARN result on the run; execution proceeds.
    """


class CheckpointCorrupt(EdgeValidateError):
    """The persisted run cannot be trusted. Abandon it and start again."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Corrupt checkpoint {path}: {reason}")
        self.path = path
        self.reason = reason
