"""Verification check types."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from edgenode_validate.config import Settings
from edgenode_validate.system import System


class CheckStatus(Enum):
    """Status of a verification check."""

    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    SKIP = "skip"


class Severity(Enum):
    """How much a failing probe weighs on the verdict."""

    CRITICAL = "critical"
    ADVISORY = "advisory"


class Verdict(Enum):
    """Aggregated health of a checklist run."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def exit_code(self) -> int:
        return {Verdict.HEALTHY: 0, Verdict.DEGRADED: 1, Verdict.UNHEALTHY: 2}[self]


@dataclass(frozen=True)
class ProbeContext:
    """What a probe may look at.

    ``notes`` is read-only scenario checkpoint data (empty for checklist runs).
    """

    system: System
    settings: Settings
    notes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Finding:
    """Raw result of a probe's check function."""

    status: CheckStatus
    message: str = ""
    remediation: str | None = None
    data: Mapping[str, Any] = field(default_factory=dict)


def passed(message: str = "", **data: Any) -> Finding:
    return Finding(CheckStatus.PASS, message, data=data)


def warned(message: str, remediation: str | None = None, **data: Any) -> Finding:
    return Finding(CheckStatus.WARN, message, remediation, data=data)


def failed(message: str, remediation: str | None = None, **data: Any) -> Finding:
    return Finding(CheckStatus.FAIL, message, remediation, data=data)


def skipped(message: str, **data: Any) -> Finding:
    return Finding(CheckStatus.SKIP, message, data=data)


@dataclass(frozen=True)
class Probe:
    """A single named, read-only check.

    Args:
        name: Stable identifier, e.g. ``service-active``
        check: Function evaluating the host; returns a Finding
        severity: CRITICAL failures make the host unhealthy
        description: Display label
        remediation: Hint shown when the check does not pass
        timeout: Seconds before the check is reported as failed
        retries: Extra attempts while the check is not passing
        retry_interval: Seconds between attempts
        best_effort: Text-scanning check; outcome is capped at WARN
    """

    name: str
    check: Callable[[ProbeContext], Finding]
    severity: Severity = Severity.CRITICAL
    description: str = ""
    remediation: str | None = None
    timeout: float = 15.0
    retries: int = 0
    retry_interval: float = 2.0
    best_effort: bool = False

    @property
    def label(self) -> str:
        return self.description or self.name


@dataclass(frozen=True)
class CheckResult:
    """Result of a single verification check."""

    name: str
    status: CheckStatus
    message: str = ""
    remediation: str | None = None
    severity: Severity = Severity.CRITICAL
    description: str = ""
    started_at: datetime | None = None
    duration: float = 0.0
    data: Mapping[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.description or self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "severity": self.severity.value,
            "message": self.message,
            "remediation": self.remediation,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "duration": round(self.duration, 3),
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CheckResult":
        started_at = raw.get("started_at")
        return cls(
            name=raw["name"],
            status=CheckStatus(raw["status"]),
            message=raw.get("message", ""),
            remediation=raw.get("remediation"),
            severity=Severity(raw.get("severity", Severity.CRITICAL.value)),
            description=raw.get("description", ""),
            started_at=datetime.fromisoformat(started_at) if started_at else None,
            duration=float(raw.get("duration", 0.0)),
            data=dict(raw.get("data") or {}),
        )


def compute_verdict(results: list[CheckResult]) -> Verdict:
    """Critical FAIL is unhealthy; any other non-pass outcome is degraded."""
    if any(
        r.status == CheckStatus.FAIL and r.severity == Severity.CRITICAL for r in results
    ):
        return Verdict.UNHEALTHY
    if any(r.status != CheckStatus.PASS for r in results):
        return Verdict.DEGRADED
    return Verdict.HEALTHY


@dataclass(frozen=True)
class CheckReport:
    """Outcomes of a checklist run in declaration order."""

    results: tuple[CheckResult, ...]
    complete: bool = True
    started_at: datetime | None = None
    duration: float = 0.0
    pending: tuple[str, ...] = ()  # probes abandoned when the run was cut short

    def _count(self, status: CheckStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def passed(self) -> int:
        return self._count(CheckStatus.PASS)

    @property
    def warned(self) -> int:
        return self._count(CheckStatus.WARN)

    @property
    def failed(self) -> int:
        return self._count(CheckStatus.FAIL)

    @property
    def skipped(self) -> int:
        return self._count(CheckStatus.SKIP)

    @property
    def verdict(self) -> Verdict | None:
        """None for an incomplete report; partial results never get a verdict."""
        if not self.complete:
            return None
        return compute_verdict(list(self.results))

    def to_dict(self) -> dict[str, Any]:
        verdict = self.verdict
        return {
            "complete": self.complete,
            "verdict": verdict.value if verdict else None,
            "counts": {
                "passed": self.passed,
                "warned": self.warned,
                "failed": self.failed,
                "skipped": self.skipped,
            },
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "duration": round(self.duration, 3),
            "pending": list(self.pending),
            "checks": [r.to_dict() for r in self.results],
        }
