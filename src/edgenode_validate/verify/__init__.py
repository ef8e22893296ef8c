"""Host and cluster verification framework."""

from edgenode_validate.config import Settings
from edgenode_validate.system import System

from .k3s_edge import get_checks
from .runner import run_checklist, run_probe
from .types import (
    CheckReport,
    CheckResult,
    CheckStatus,
    Finding,
    Probe,
    ProbeContext,
    Severity,
    Verdict,
)

__all__ = [
    "CheckReport",
    "CheckResult",
    "CheckStatus",
    "Finding",
    "Probe",
    "ProbeContext",
    "Severity",
    "Verdict",
    "get_checks",
    "run_all_checks",
    "run_checklist",
    "run_probe",
]


def run_all_checks(
    system: System, settings: Settings, deadline: float | None = None
) -> CheckReport:
    """Run the edge host checklist."""
    context = ProbeContext(system=system, settings=settings)
    return run_checklist(
        get_checks(), context, workers=settings.workers, deadline=deadline
    )
