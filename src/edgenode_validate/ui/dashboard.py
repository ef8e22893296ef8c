"""Rich rendering for check reports and scenario runs."""

import readchar
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from edgenode_validate.errors import EdgeValidateError
from edgenode_validate.platform import Platform
from edgenode_validate.scenarios import (
    REBOOT_SCENARIOS,
    RUN_ALL_ORDER,
    ManualAction,
    Scenario,
    ScenarioEngine,
    ScenarioRun,
    ScenarioStatus,
    ScenarioSummary,
    ScenarioVerdict,
)
from edgenode_validate.verify import CheckReport, CheckResult, CheckStatus, Verdict

STATUS_ICONS = {
    CheckStatus.PASS: "[green]OK[/green]",
    CheckStatus.WARN: "[yellow]WARN[/yellow]",
    CheckStatus.FAIL: "[red]FAIL[/red]",
    CheckStatus.SKIP: "[dim]SKIP[/dim]",
}

VERDICT_STYLES = {
    Verdict.HEALTHY: "green",
    Verdict.DEGRADED: "yellow",
    Verdict.UNHEALTHY: "red",
    ScenarioVerdict.PASS: "green",
    ScenarioVerdict.DEGRADED: "yellow",
    ScenarioVerdict.FAIL: "red",
}


def _build_platform_panel(platform: Platform) -> Panel:
    platform_info = f"Board:   {platform.model or '(unknown)'}\n"
    platform_info += (
        f"Family:  {platform.board_family.name}/{platform.board_model.name}\n"
        f"OS:      {platform.os_type.name}"
    )
    if platform.os_version:
        platform_info += f" {platform.os_version}"
    platform_info += f"\nKernel:  {platform.kernel_version}"
    return Panel(platform_info, title="Platform")


def _build_results_table(results: list[CheckResult], verbose: bool) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Check", style="cyan", min_width=20)
    table.add_column("Status", justify="center", width=6)
    table.add_column("Details", min_width=20)

    for check in results:
        details = check.message
        if check.remediation and check.status != CheckStatus.PASS:
            if verbose or check.status == CheckStatus.FAIL:
                details += f" [dim]({check.remediation})[/dim]"
        table.add_row(check.label, STATUS_ICONS[check.status], details)
    return table


def _stats(results: list[CheckResult]) -> str:
    counts = {
        status: sum(1 for r in results if r.status == status) for status in CheckStatus
    }
    stats = (
        f"Passed: {counts[CheckStatus.PASS]} | "
        f"Warnings: {counts[CheckStatus.WARN]} | "
        f"Failed: {counts[CheckStatus.FAIL]}"
    )
    if counts[CheckStatus.SKIP]:
        stats += f" | Skipped: {counts[CheckStatus.SKIP]}"
    return stats


def render_report(
    report: CheckReport,
    platform: Platform | None = None,
    verbose: bool = False,
    console: Console | None = None,
) -> None:
    console = console or Console()
    if platform is not None:
        console.print(_build_platform_panel(platform))
        console.print()

    console.print(_build_results_table(list(report.results), verbose))
    console.print()

    verdict = report.verdict
    if verdict is None:
        summary = "[red bold]INCOMPLETE[/red bold] (no verdict)"
        border_style = "red"
    else:
        border_style = VERDICT_STYLES[verdict]
        summary = f"[{border_style} bold]{verdict.name}[/{border_style} bold]"

    stats = _stats(list(report.results))
    if report.pending:
        stats += f"\nNot finished: {', '.join(report.pending)}"
    console.print(
        Panel(f"{summary}\n{stats}", title="Summary", border_style=border_style)
    )


def render_manual_action(
    scenario: Scenario, action: ManualAction, console: Console | None = None
) -> None:
    console = console or Console()
    lines = [f"[bold]{action.description}[/bold]", ""]
    lines += [f"  {line}" for line in action.instructions]
    lines += [
        "",
        "When done, continue with:",
        f"  edgenode-validate scenario resume {scenario.id} --token {action.token}",
    ]
    console.print(
        Panel("\n".join(lines), title="Manual Action Required", border_style="yellow")
    )


def render_run(
    scenario: Scenario,
    run: ScenarioRun,
    pending: ManualAction | None = None,
    verbose: bool = False,
    console: Console | None = None,
) -> None:
    console = console or Console()
    header = f"[bold]{scenario.title}[/bold]\n{scenario.purpose}"
    if scenario.rationale:
        header += f"\n[dim]{scenario.rationale}[/dim]"
    console.print(Panel(header, title=f"Scenario {scenario.id}"))
    console.print()

    results = [r.result for r in run.results if r.kind != "wait"]
    if results:
        console.print(_build_results_table(results, verbose))
        console.print()

    if pending is not None:
        render_manual_action(scenario, pending, console)
        return

    if run.status == ScenarioStatus.ABANDONED:
        console.print(
            Panel(
                f"[dim bold]ABANDONED[/dim bold]\n{run.abandon_reason or ''}",
                title="Summary",
            )
        )
        return

    if run.verdict is None:
        console.print(
            Panel(
                f"[yellow bold]IN PROGRESS[/yellow bold] at step {run.next_step}\n"
                f"Continue with: edgenode-validate scenario resume {scenario.id}",
                title="Summary",
                border_style="yellow",
            )
        )
        return

    border_style = VERDICT_STYLES[run.verdict]
    body = f"[{border_style} bold]{run.verdict.name}[/{border_style} bold]\n{_stats(results)}"
    if run.aborted:
        body += "\nAborted: the pre-test gate or an action failed"
    if run.verdict == ScenarioVerdict.FAIL and scenario.common_causes:
        body += "\n\nCommon causes:"
        body += "".join(f"\n  - {cause}" for cause in scenario.common_causes)
    console.print(Panel(body, title="Summary", border_style=border_style))


def _describe_run(entry: ScenarioSummary) -> str:
    if entry.error:
        return "[red]corrupt checkpoint[/red]"
    run = entry.run
    if run is None:
        return "[dim]not run[/dim]"
    if run.status == ScenarioStatus.COMPLETED and run.verdict is not None:
        style = VERDICT_STYLES[run.verdict]
        return f"[{style}]{run.verdict.name}[/{style}]"
    if run.status == ScenarioStatus.AWAITING_MANUAL_ACTION:
        return "[yellow]awaiting action[/yellow]"
    return run.status.value.replace("_", " ")


def build_scenario_table(entries: list[ScenarioSummary]) -> Table:
    table = Table(show_header=True, header_style="bold", box=None)
    table.add_column("#", style="cyan", width=3)
    table.add_column("Scenario", min_width=20)
    table.add_column("Id", style="dim", min_width=18)
    table.add_column("Last run", justify="center", width=18)

    for entry in entries:
        table.add_row(
            f"[{entry.scenario.alias}]",
            entry.scenario.title,
            entry.scenario.id,
            _describe_run(entry),
        )
    return table


def prompt_manual_action(
    scenario: Scenario, action: ManualAction, console: Console
) -> bool:
    """Ask the operator to perform the action. True means resume now."""
    render_manual_action(scenario, action, console)
    console.print(
        Text(
            "Press c once done to continue, q to stop (the run stays resumable)",
            style="dim",
        )
    )
    while True:
        try:
            key = readchar.readkey()
        except KeyboardInterrupt:
            return False
        if key in ("c", "C", readchar.key.ENTER):
            return True
        if key in ("q", "Q", "\x03", "\x1b"):
            return False


def follow_run(
    engine: ScenarioEngine, run: ScenarioRun, console: Console
) -> ScenarioRun:
    """Keep resuming in-process while the operator confirms manual actions.

    The checkpoint is saved before every prompt, so stopping here is safe.
    """
    scenario = engine.scenario(run.scenario_id)
    while True:
        action = engine.pending_action(run)
        if action is None:
            return run
        if not prompt_manual_action(scenario, action, console):
            return run
        run = engine.resume(scenario.id, token=action.token)


def _start_or_continue(engine: ScenarioEngine, scenario_id: str) -> ScenarioRun:
    run = engine.store.load(scenario_id)
    if run is None or run.status.terminal:
        return engine.start(scenario_id)
    if run.status == ScenarioStatus.IN_PROGRESS:
        return engine.resume(scenario_id)
    return run


def run_all(
    engine: ScenarioEngine, console: Console, follow: bool = True
) -> list[ScenarioRun]:
    """Run the scenarios that need no reboot, one after another.

    Stops at the first run left waiting on a manual action, since the next
    scenario would find the host in the state that action left it in.
    """
    runs = []
    for scenario_id in RUN_ALL_ORDER:
        run = _start_or_continue(engine, scenario_id)
        if follow:
            run = follow_run(engine, run, console)
        runs.append(run)
        if run.status == ScenarioStatus.AWAITING_MANUAL_ACTION:
            break
    return runs


def render_reboot_scenarios(engine: ScenarioEngine, console: Console) -> None:
    lines = ["These restart the host, so run them one at a time:"]
    for scenario_id in REBOOT_SCENARIOS:
        scenario = engine.scenario(scenario_id)
        lines.append(
            f"  {scenario.title}: edgenode-validate scenario start {scenario.id} --wait"
        )
    console.print(Panel("\n".join(lines), title="Manual Scenarios"))


def run_menu(engine: ScenarioEngine) -> None:
    console = Console()
    keys = {s.alias: s for s in engine.catalog.values() if s.alias}

    while True:
        console.clear()
        console.print(Panel("Select a test scenario", title="Failure Scenarios"))
        console.print()
        console.print(build_scenario_table(engine.summaries()))
        console.print()
        console.print(
            Text(
                f"Press {min(keys)}-{max(keys)} to run or resume, a to run all, q to quit",
                style="dim",
            )
        )

        try:
            key = readchar.readkey()
        except KeyboardInterrupt:
            console.print()
            return

        if key in ("q", "Q", "\x03"):
            console.print()
            return

        if key in ("a", "A"):
            console.clear()
            try:
                for run in run_all(engine, console):
                    render_run(
                        engine.scenario(run.scenario_id),
                        run,
                        engine.pending_action(run),
                        console=console,
                    )
                render_reboot_scenarios(engine, console)
            except EdgeValidateError as exc:
                console.print(f"[red]{exc}[/red]")
            console.print("\n[dim]Press any key to continue...[/dim]")
            readchar.readkey()
            continue

        scenario = keys.get(key)
        if scenario is None:
            continue

        console.clear()
        try:
            run = follow_run(engine, _start_or_continue(engine, scenario.id), console)
            render_run(scenario, run, engine.pending_action(run), console=console)
        except EdgeValidateError as exc:
            console.print(f"[red]{exc}[/red]")

        console.print("\n[dim]Press any key to continue...[/dim]")
        readchar.readkey()
