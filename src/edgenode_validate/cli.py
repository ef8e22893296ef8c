import json
import logging
import subprocess
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from importlib.resources import files
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from edgenode_validate import __version__
from edgenode_validate.config import Settings
from edgenode_validate.errors import (
    CheckpointCorrupt,
    NoScenarioRun,
    ResumeTokenMismatch,
    ScenarioAlreadyActive,
    ScenarioBusy,
    ScenarioNotResumable,
    UnknownScenario,
)
from edgenode_validate.platform import detect_platform
from edgenode_validate.system import build_system

# sysexits.h
EX_USAGE = 64
EX_DATAERR = 65
EX_TEMPFAIL = 75

EXIT_INCOMPLETE = 3


class CommandFailed(click.ClickException):
    """A ClickException with a specific exit code."""

    def __init__(self, message: str, exit_code: int):
        super().__init__(message)
        self.exit_code = exit_code


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@click.group(context_settings={"auto_envvar_prefix": "EDGENODE"})
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Settings.state_dir,
    show_default=True,
    help="Where scenario checkpoints and config backups are kept",
)
@click.option("--service", default=Settings.service, show_default=True)
@click.option("--kubeconfig", default=Settings.kubeconfig, show_default=True)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.version_option(__version__)
@click.pass_context
def main(ctx: click.Context, state_dir: Path, service: str, kubeconfig: str, verbose: bool):
    """Validation and failure-scenario testing for edge cluster hosts."""
    _setup_logging(verbose)
    ctx.obj = Settings(state_dir=state_dir, service=service, kubeconfig=kubeconfig)


@main.command()
@click.option(
    "--verbose", "-v", is_flag=True, help="Show remediation hints for warnings too"
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--workers", type=click.IntRange(1, 32), default=None)
@click.option(
    "--deadline", type=float, default=None, help="Overall time budget in seconds"
)
@click.pass_obj
def check(
    settings: Settings,
    verbose: bool,
    as_json: bool,
    workers: int | None,
    deadline: float | None,
):
    """Run the host and cluster checklist."""
    from edgenode_validate.ui import render_report
    from edgenode_validate.verify import run_all_checks

    if workers:
        settings = replace(settings, workers=workers)

    platform = detect_platform()
    report = run_all_checks(build_system(settings), settings, deadline=deadline)

    if as_json:
        data = {
            "platform": {
                "board_family": platform.board_family.name,
                "board_model": platform.board_model.name,
                "os_type": platform.os_type.name,
                "os_version": platform.os_version,
                "kernel_version": platform.kernel_version,
                "model": platform.model,
            },
            **report.to_dict(),
        }
        click.echo(json.dumps(data, indent=2))
    else:
        render_report(report, platform, verbose=verbose)

    verdict = report.verdict
    raise SystemExit(EXIT_INCOMPLETE if verdict is None else verdict.exit_code)


@main.command()
@click.option("--dry", is_flag=True, help="Show what would change without applying")
@click.pass_obj
def prep(settings: Settings, dry: bool):
    """Prepare the OS: swap, cgroups, journald, kernel modules, sysctl."""
    deploys = files("edgenode_validate.deploys")
    path = deploys.joinpath("os_prep.py")
    cmd = ["pyinfra", "@local", str(path)]
    for key, value in settings.as_data().items():
        cmd.extend(["--data", f"{key}={value}"])
    if dry:
        cmd.append("--dry")
    result = subprocess.run(cmd)
    if result.returncode == 0 and not dry:
        click.echo("Preparation complete. Reboot if boot parameters changed.")
    raise SystemExit(result.returncode)


# Scenarios


def _engine(settings: Settings):
    from edgenode_validate.scenarios import CheckpointStore, ScenarioEngine, build_catalog
    from edgenode_validate.verify import ProbeContext

    return ScenarioEngine(
        store=CheckpointStore(settings.scenario_dir),
        context=ProbeContext(system=build_system(settings), settings=settings),
        catalog=build_catalog(settings),
        default_threshold=settings.pass_threshold,
    )


@contextmanager
def _scenario_errors(scenario_id: str | None = None) -> Iterator[None]:
    try:
        yield
    except (UnknownScenario, NoScenarioRun, ScenarioNotResumable, ResumeTokenMismatch) as exc:
        raise CommandFailed(str(exc), EX_USAGE) from exc
    except (ScenarioAlreadyActive, ScenarioBusy) as exc:
        raise CommandFailed(str(exc), EX_TEMPFAIL) from exc
    except CheckpointCorrupt as exc:
        scenario_id = scenario_id or Path(exc.path).stem
        raise CommandFailed(
            f"{exc}\nDiscard it with: edgenode-validate scenario abandon {scenario_id}",
            EX_DATAERR,
        ) from exc


def _run_data(engine, run) -> dict:
    pending = engine.pending_action(run)
    data = run.to_dict()
    data["pending_action"] = (
        {
            "description": pending.description,
            "token": pending.token,
            "instructions": list(pending.instructions),
        }
        if pending
        else None
    )
    return data


def _report_run(engine, run, as_json: bool, verbose: bool = False) -> None:
    from edgenode_validate.scenarios import verdict_exit_code
    from edgenode_validate.ui import render_run

    if as_json:
        click.echo(json.dumps(_run_data(engine, run), indent=2))
    else:
        scenario = engine.scenario(run.scenario_id)
        render_run(scenario, run, engine.pending_action(run), verbose=verbose)
    raise SystemExit(verdict_exit_code(run))


@main.group()
def scenario():
    """Failure-injection scenarios that survive reboots."""
    pass


@scenario.command("list")
@click.pass_obj
def list_scenarios(settings: Settings):
    """List scenarios and their last run."""
    from edgenode_validate.ui import build_scenario_table

    Console().print(build_scenario_table(_engine(settings).summaries()))


@scenario.command()
@click.argument("scenario_id")
@click.option("--wait", is_flag=True, help="Stay running through manual actions")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def start(settings: Settings, scenario_id: str, wait: bool, as_json: bool):
    """Start a scenario (by id or number)."""
    from edgenode_validate.ui import follow_run

    engine = _engine(settings)
    with _scenario_errors(scenario_id):
        run = engine.start(scenario_id)
        if wait:
            run = follow_run(engine, run, Console())
    _report_run(engine, run, as_json)


@scenario.command()
@click.argument("scenario_id")
@click.option("--token", default=None, help="Token printed with the manual action")
@click.option("--wait", is_flag=True, help="Stay running through manual actions")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def resume(
    settings: Settings, scenario_id: str, token: str | None, wait: bool, as_json: bool
):
    """Continue a scenario after its manual action."""
    from edgenode_validate.ui import follow_run

    engine = _engine(settings)
    with _scenario_errors(scenario_id):
        run = engine.resume(scenario_id, token=token)
        if wait:
            run = follow_run(engine, run, Console())
    _report_run(engine, run, as_json)


@scenario.command("run-all")
@click.option("--wait", is_flag=True, help="Stay running through manual actions")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def run_all_scenarios(settings: Settings, wait: bool, as_json: bool):
    """Run workload recovery, memory pressure and network isolation in turn.

    The reboot scenarios are listed for manual runs. Exits with the worst
    result; a run left waiting on a manual action stops the sequence.
    """
    from edgenode_validate.scenarios import REBOOT_SCENARIOS, verdict_exit_code
    from edgenode_validate.ui import render_reboot_scenarios, render_run, run_all

    engine = _engine(settings)
    console = Console()
    with _scenario_errors():
        runs = run_all(engine, console, follow=wait)

    if as_json:
        data = {
            "runs": [_run_data(engine, run) for run in runs],
            "manual_scenarios": list(REBOOT_SCENARIOS),
        }
        click.echo(json.dumps(data, indent=2))
    else:
        for run in runs:
            scenario = engine.scenario(run.scenario_id)
            render_run(scenario, run, engine.pending_action(run), console=console)
        render_reboot_scenarios(engine, console)
    raise SystemExit(max(verdict_exit_code(run) for run in runs))


@scenario.command()
@click.argument("scenario_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option(
    "--verbose", "-v", is_flag=True, help="Show remediation hints for warnings too"
)
@click.pass_obj
def status(settings: Settings, scenario_id: str, as_json: bool, verbose: bool):
    """Show the stored state of a scenario."""
    engine = _engine(settings)
    with _scenario_errors(scenario_id):
        run = engine.status(scenario_id)
    _report_run(engine, run, as_json, verbose)


@scenario.command()
@click.argument("scenario_id")
@click.option("--reason", default="abandoned by operator", show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def abandon(settings: Settings, scenario_id: str, reason: str, as_json: bool):
    """Give up on a scenario run; it cannot be resumed afterwards."""
    engine = _engine(settings)
    with _scenario_errors(scenario_id):
        run = engine.abandon(scenario_id, reason)
    _report_run(engine, run, as_json)


@scenario.command()
@click.argument("scenario_id")
@click.pass_obj
def clear(settings: Settings, scenario_id: str):
    """Delete the record of a finished scenario run."""
    engine = _engine(settings)
    with _scenario_errors(scenario_id):
        engine.clear(scenario_id)
    click.echo(f"Cleared {engine.scenario(scenario_id).id}")


@scenario.command()
@click.pass_obj
def menu(settings: Settings):
    """Interactive scenario menu."""
    from edgenode_validate.ui import run_menu

    run_menu(_engine(settings))


if __name__ == "__main__":
    main()
