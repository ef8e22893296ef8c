"""Probe and checklist runners."""

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime, timezone

from edgenode_validate.errors import (
    ProbeCheckFailed,
    ProbeDependencyUnavailable,
    ProbeTimeout,
)
from edgenode_validate.system import CollaboratorError, CommandUnavailable

from .types import (
    CheckReport,
    CheckResult,
    CheckStatus,
    Finding,
    Probe,
    ProbeContext,
)

logger = logging.getLogger(__name__)


def _attempt(probe: Probe, context: ProbeContext) -> Finding:
    """Run the check in a daemon thread so a hung query cannot block us."""
    outcome: list[Finding | Exception] = []

    def target() -> None:
        try:
            outcome.append(probe.check(context))
        except Exception as exc:
            outcome.append(exc)

    worker = threading.Thread(target=target, name=f"probe-{probe.name}", daemon=True)
    worker.start()
    worker.join(probe.timeout)
    if worker.is_alive():
        raise ProbeTimeout(probe.timeout)

    result = outcome[0]
    if isinstance(result, Exception):
        raise result
    if not isinstance(result, Finding):
        raise TypeError(f"check returned {type(result).__name__}, not Finding")
    return result


def _evaluate(probe: Probe, context: ProbeContext) -> Finding:
    """Run one attempt and fold every failure mode into a Finding."""
    try:
        return _attempt(probe, context)
    except ProbeTimeout as exc:
        return Finding(CheckStatus.FAIL, str(exc))
    except (ProbeDependencyUnavailable, CommandUnavailable) as exc:
        return Finding(CheckStatus.SKIP, str(exc))
    except ProbeCheckFailed as exc:
        return Finding(CheckStatus.FAIL, str(exc), exc.remediation)
    except CollaboratorError as exc:
        return Finding(CheckStatus.FAIL, str(exc))
    except Exception as exc:
        logger.warning("Probe %s raised %s: %s", probe.name, type(exc).__name__, exc)
        logger.debug("Probe %s traceback", probe.name, exc_info=exc)
        return Finding(CheckStatus.FAIL, f"unexpected error: {exc}")


def run_probe(
    probe: Probe,
    context: ProbeContext,
    sleep: Callable[[float], None] = time.sleep,
) -> CheckResult:
    """Run a probe, honouring its timeout and retry budget.

    Never raises: every failure of the check itself becomes the outcome.
    """
    started_at = datetime.now(timezone.utc)
    t0 = time.monotonic()
    logger.debug("Probe %s started", probe.name)

    attempts = probe.retries + 1
    finding = _evaluate(probe, context)
    for attempt in range(2, attempts + 1):
        if finding.status in (CheckStatus.PASS, CheckStatus.SKIP):
            break
        logger.debug(
            "Probe %s returned %s, retry %d/%d in %gs",
            probe.name,
            finding.status.value,
            attempt - 1,
            probe.retries,
            probe.retry_interval,
        )
        sleep(probe.retry_interval)
        finding = _evaluate(probe, context)

    status = finding.status
    if probe.best_effort and status == CheckStatus.FAIL:
        status = CheckStatus.WARN

    remediation = None
    if status != CheckStatus.PASS:
        remediation = finding.remediation or probe.remediation

    duration = time.monotonic() - t0
    logger.debug("Probe %s finished: %s (%.2fs)", probe.name, status.value, duration)
    return CheckResult(
        name=probe.name,
        status=status,
        message=finding.message,
        remediation=remediation,
        severity=probe.severity,
        description=probe.description,
        started_at=started_at,
        duration=duration,
        data=dict(finding.data),
    )


def run_checklist(
    probes: Sequence[Probe],
    context: ProbeContext,
    workers: int = 4,
    deadline: float | None = None,
) -> CheckReport:
    """Run every probe and report all outcomes in declaration order.

    Args:
        probes: Probes in the order they should be reported
        context: Shared probe context
        workers: Size of the worker pool
        deadline: Overall seconds budget; when it runs out the probes still
            running are abandoned and the report is marked incomplete

    Returns:
        CheckReport; ``verdict`` is None when the run was cut short
    """
    started_at = datetime.now(timezone.utc)
    t0 = time.monotonic()
    slots: list[CheckResult | None] = [None] * len(probes)

    executor = ThreadPoolExecutor(
        max_workers=max(1, workers), thread_name_prefix="checklist"
    )
    try:
        futures = {
            executor.submit(run_probe, probe, context): index
            for index, probe in enumerate(probes)
        }
        done, not_done = wait(futures, timeout=deadline)
        for future in done:
            slots[futures[future]] = future.result()
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if not_done:
        logger.warning(
            "Checklist deadline of %gs reached with %d probes unfinished",
            deadline,
            len(not_done),
        )

    results = tuple(r for r in slots if r is not None)
    pending = tuple(probes[i].name for i, r in enumerate(slots) if r is None)
    return CheckReport(
        results=results,
        complete=not pending,
        started_at=started_at,
        duration=time.monotonic() - t0,
        pending=pending,
    )


def with_notes(context: ProbeContext, notes: dict) -> ProbeContext:
    return replace(context, notes=notes)
