from edgenode_validate.scenarios import (
    ScenarioStatus,
    ScenarioVerdict,
    build_catalog,
    verdict_exit_code,
)
from edgenode_validate.scenarios.catalog import PRESSURE_WORKLOAD
from edgenode_validate.system import BootState, EnablementState, MemoryUsage, ServiceState
from edgenode_validate.verify import CheckStatus

from conftest import pod

PRECHECK = ["service-active", "kubectl-available", "node-ready", "pod-census"]


def outcomes(run):
    return {r.result.name: r.status for r in run.results}


def test_catalog_layout(settings):
    catalog = build_catalog(settings)
    assert list(catalog) == [
        "reboot-recovery",
        "power-loss",
        "network-isolation",
        "memory-pressure",
        "workload-recovery",
    ]
    assert [s.alias for s in catalog.values()] == ["1", "2", "3", "4", "5"]
    assert len({s.fingerprint for s in catalog.values()}) == 5
    for scenario in catalog.values():
        assert [s.name for s in scenario.steps[:4]] == PRECHECK
        assert scenario.common_causes


def test_reboot_recovery(engine, system, sleeps):
    run = engine.start("reboot-recovery")

    assert run.status == ScenarioStatus.AWAITING_MANUAL_ACTION
    assert run.resume_token == "rebooted"
    assert verdict_exit_code(run) == 10
    assert run.checkpoint["manual:rebooted"]["boot_id"] == "boot-a"

    system.host.boot = BootState(boot_id="boot-b", uptime_seconds=42.0)
    run = engine.resume("1", token="rebooted")

    assert run.status == ScenarioStatus.COMPLETED
    assert run.verdict == ScenarioVerdict.PASS
    assert verdict_exit_code(run) == 0
    assert all(r.status == CheckStatus.PASS for r in run.results)
    assert "manual:rebooted:confirmed" in outcomes(run)
    assert sleeps == [0]


def test_resume_without_reboot_warns(engine):
    engine.start("reboot-recovery")

    run = engine.resume("reboot-recovery", token="rebooted")

    confirm = outcomes(run)["manual:rebooted:confirmed"]
    assert confirm == CheckStatus.WARN
    assert run.status == ScenarioStatus.COMPLETED


def test_boot_id_missing_falls_back_to_uptime(engine, system):
    system.host.boot = BootState(boot_id="", uptime_seconds=86400.0)
    engine.start("reboot-recovery")
    system.host.boot = BootState(boot_id="", uptime_seconds=30.0)

    run = engine.resume("reboot-recovery")

    assert outcomes(run)["manual:rebooted:confirmed"] == CheckStatus.PASS


def test_uptime_without_reboot_warns(engine, system):
    system.host.boot = BootState(boot_id="", uptime_seconds=86400.0)
    engine.start("reboot-recovery")
    system.host.boot = BootState(boot_id="", uptime_seconds=86700.0)

    run = engine.resume("reboot-recovery", token="rebooted")

    assert outcomes(run)["manual:rebooted:confirmed"] == CheckStatus.WARN


def test_service_down_after_reboot_fails(engine, system):
    engine.start("reboot-recovery")
    system.host.boot = BootState(boot_id="boot-b", uptime_seconds=42.0)
    system.services.active["k3s"] = ServiceState.INACTIVE

    run = engine.resume("reboot-recovery")

    assert outcomes(run)["service-autostarted"] == CheckStatus.FAIL
    assert run.verdict == ScenarioVerdict.FAIL


def test_disabled_service_aborts_before_reboot(engine, system):
    system.services.enabled["k3s"] = EnablementState.DISABLED

    run = engine.start("reboot-recovery")

    assert run.status == ScenarioStatus.COMPLETED
    assert run.aborted
    assert run.resume_token is None
    assert run.verdict == ScenarioVerdict.FAIL
    assert verdict_exit_code(run) == 2
    results = outcomes(run)
    assert results["service-enabled"] == CheckStatus.FAIL
    assert results["manual:rebooted"] == CheckStatus.SKIP
    assert "manual:rebooted" not in run.checkpoint


def test_precheck_failure_aborts_before_manual_action(engine, system):
    system.services.active["k3s"] = ServiceState.INACTIVE

    run = engine.start("power-loss")

    assert run.status == ScenarioStatus.COMPLETED
    assert run.aborted
    assert run.verdict == ScenarioVerdict.FAIL
    assert outcomes(run)["manual:power-cycled"] == CheckStatus.SKIP


def test_power_loss(engine, system):
    run = engine.start("power-loss")
    assert run.checkpoint["datastore-state"]["size"] == 4 * 1024 * 1024

    system.host.boot = BootState(boot_id="boot-b", uptime_seconds=42.0)
    system.logs.boot_lines = ["EXT4-fs warning: mounting fs with errors, running e2fsck"]
    run = engine.resume("power-loss", token="power-cycled")

    results = outcomes(run)
    assert results["datastore-integrity"] == CheckStatus.PASS
    assert results["pods-rescheduled"] == CheckStatus.PASS
    assert results["fs-corruption-signals"] == CheckStatus.WARN
    assert run.verdict == ScenarioVerdict.PASS


def test_network_isolation_has_two_pauses(engine, system):
    run = engine.start("network-isolation")
    assert run.resume_token == "disconnected"

    system.network.up = False
    run = engine.resume("network-isolation", token="disconnected")
    assert run.status == ScenarioStatus.AWAITING_MANUAL_ACTION
    assert run.resume_token == "reconnected"
    assert outcomes(run)["manual:disconnected:confirmed"] == CheckStatus.PASS

    system.network.up = True
    run = engine.resume("network-isolation", token="reconnected")

    assert run.verdict == ScenarioVerdict.PASS
    assert outcomes(run)["connectivity-restored"] == CheckStatus.PASS


def test_network_still_connected_is_flagged(engine):
    engine.start("network-isolation")
    run = engine.resume("network-isolation", token="disconnected")
    assert outcomes(run)["manual:disconnected:confirmed"] == CheckStatus.WARN


def _oom_killed(cluster):
    cluster.workloads.append(
        pod(PRESSURE_WORKLOAD, namespace="default", phase="Failed", ready=False, reason="OOMKilled")
    )


def test_memory_pressure(engine, system, sleeps):
    system.cluster.on_apply = _oom_killed

    run = engine.start("memory-pressure")

    assert system.cluster.applied[0].endswith("memory-pressure-test.yaml")
    assert system.cluster.removed == system.cluster.applied
    assert system.cluster.get_workload(PRESSURE_WORKLOAD, "default") is None
    assert outcomes(run)["pressure-outcome"] == CheckStatus.PASS
    assert sleeps == [10, 30]
    assert run.verdict == ScenarioVerdict.PASS


def test_memory_over_limit_degrades_pressure_run(engine, system):
    system.host.mem = MemoryUsage(total_mb=1906, used_mb=1500)
    system.cluster.on_apply = _oom_killed

    run = engine.start("memory-pressure")

    results = outcomes(run)
    assert results["memory-usage"] == CheckStatus.FAIL
    assert results["pressure-outcome"] == CheckStatus.PASS
    assert not run.aborted
    assert run.verdict == ScenarioVerdict.DEGRADED
    assert verdict_exit_code(run) == 1


def test_memory_pressure_not_exercised(engine, system):
    system.cluster.on_apply = lambda cluster: cluster.workloads.append(
        pod(PRESSURE_WORKLOAD, namespace="default")
    )
    run = engine.start("memory-pressure")
    assert outcomes(run)["pressure-outcome"] == CheckStatus.WARN
    assert len(system.cluster.removed) == 1


def test_memory_pressure_cleanup_runs_after_abort(engine, system):
    system.cluster.nodes = []

    run = engine.start("memory-pressure")

    assert run.aborted
    assert system.cluster.applied == []
    assert len(system.cluster.removed) == 1
    assert outcomes(run)["remove-pressure-workload"] == CheckStatus.PASS
    assert run.verdict == ScenarioVerdict.FAIL


def test_workload_recovery(engine, system, sleeps):
    run = engine.start("workload-recovery")

    assert system.cluster.deleted == ["coredns-6799fbcd5-abcde"]
    assert run.checkpoint["replacement-created"]["replacement"] == "coredns-6799fbcd5-fresh"
    assert "recovery_seconds" in run.checkpoint["recovery-time"]
    assert sleeps == [5]
    assert run.verdict == ScenarioVerdict.PASS


def test_workload_not_replaced(engine, system, sleeps):
    system.cluster.respawn = False

    run = engine.start("workload-recovery")

    results = outcomes(run)
    assert results["replacement-created"] == CheckStatus.FAIL
    assert results["replacement-ready"] == CheckStatus.WARN
    assert results["recovery-time"] == CheckStatus.WARN
    assert sleeps.count(2.5) == 6
    assert run.verdict == ScenarioVerdict.FAIL
