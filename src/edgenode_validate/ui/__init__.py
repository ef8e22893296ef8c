from .dashboard import (
    build_scenario_table,
    follow_run,
    render_manual_action,
    render_reboot_scenarios,
    render_report,
    render_run,
    run_all,
    run_menu,
)

__all__ = [
    "build_scenario_table",
    "follow_run",
    "render_manual_action",
    "render_reboot_scenarios",
    "render_report",
    "render_run",
    "run_all",
    "run_menu",
]
