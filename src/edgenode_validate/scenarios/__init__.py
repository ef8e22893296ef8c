"""Resumable failure-injection scenarios."""

from .catalog import REBOOT_SCENARIOS, RUN_ALL_ORDER, build_catalog
from .machine import ScenarioEngine, ScenarioSummary, verdict_exit_code
from .store import CheckpointStore
from .types import (
    Action,
    AutomatedCheck,
    ManualAction,
    Scenario,
    ScenarioRun,
    ScenarioStatus,
    ScenarioVerdict,
    StepResult,
    Wait,
)

__all__ = [
    "REBOOT_SCENARIOS",
    "RUN_ALL_ORDER",
    "Action",
    "AutomatedCheck",
    "CheckpointStore",
    "ManualAction",
    "Scenario",
    "ScenarioEngine",
    "ScenarioRun",
    "ScenarioStatus",
    "ScenarioSummary",
    "ScenarioVerdict",
    "StepResult",
    "Wait",
    "build_catalog",
    "verdict_exit_code",
]
