import pytest

from edgenode_validate.errors import (
    CheckpointCorrupt,
    NoScenarioRun,
    ResumeTokenMismatch,
    ScenarioAlreadyActive,
    ScenarioBusy,
    ScenarioNotResumable,
    ScenarioResumeWithoutCheckpoint,
    UnknownScenario,
)
from edgenode_validate.scenarios import (
    Action,
    AutomatedCheck,
    CheckpointStore,
    ManualAction,
    Scenario,
    ScenarioEngine,
    ScenarioStatus,
    ScenarioVerdict,
    StepResult,
    Wait,
    verdict_exit_code,
)
from edgenode_validate.scenarios.types import compute_scenario_verdict
from edgenode_validate.verify import CheckResult, CheckStatus, Probe, Severity
from edgenode_validate.verify.types import failed, passed


def check(name, finding=None, calls=None, **kwargs):
    def run(ctx):
        if calls is not None:
            calls.append(name)
        return finding or passed()

    return AutomatedCheck(Probe(name=name, check=run), **kwargs)


def unplug(confirmed=True):
    def confirm(ctx, captured):
        if captured.get("link") == "up" and confirmed:
            return passed("link went down")
        return failed("link never went down")

    return ManualAction(
        description="Unplug the network cable",
        token="unplugged",
        capture=lambda ctx: {"link": "up"},
        confirm=confirm,
    )


def manual_scenario(confirmed=True):
    return Scenario(
        id="demo",
        title="Demo",
        purpose="Exercise the run lifecycle",
        alias="7",
        steps=(check("before"), unplug(confirmed), check("after")),
    )


@pytest.fixture
def make_engine(context, settings, sleeps):
    def build(*scenarios):
        return ScenarioEngine(
            store=CheckpointStore(settings.scenario_dir),
            context=context,
            catalog={s.id: s for s in scenarios},
            sleep=sleeps.append,
        )

    return build


def test_lookup_by_id_or_alias(make_engine):
    engine = make_engine(manual_scenario())
    assert engine.scenario("7") is engine.scenario("demo")
    with pytest.raises(UnknownScenario):
        engine.scenario("8")


def test_start_pauses_at_manual_action(make_engine):
    engine = make_engine(manual_scenario())

    run = engine.start("demo")

    assert run.status == ScenarioStatus.AWAITING_MANUAL_ACTION
    assert run.resume_token == "unplugged"
    assert run.last_completed_step == 1
    assert run.checkpoint["manual:unplugged"] == {"link": "up"}
    assert verdict_exit_code(run) == 10
    assert engine.pending_action(run).token == "unplugged"
    assert engine.status("demo").to_dict() == run.to_dict()


def test_resume_completes_run(make_engine):
    engine = make_engine(manual_scenario())
    engine.start("demo")

    run = engine.resume("demo", token="unplugged")

    assert run.status == ScenarioStatus.COMPLETED
    assert run.verdict == ScenarioVerdict.PASS
    assert run.resume_token is None
    assert run.completed_at is not None
    assert [r.result.name for r in run.results] == [
        "before",
        "manual:unplugged:confirmed",
        "after",
    ]
    assert verdict_exit_code(run) == 0
    assert engine.pending_action(run) is None


def test_resume_without_token_is_accepted(make_engine):
    engine = make_engine(manual_scenario())
    engine.start("demo")
    assert engine.resume("demo").status == ScenarioStatus.COMPLETED


def test_unconfirmed_action_is_recorded_as_warning(make_engine):
    engine = make_engine(manual_scenario(confirmed=False))
    engine.start("demo")

    run = engine.resume("demo", token="unplugged")

    confirm = run.results[1]
    assert confirm.status == CheckStatus.WARN
    assert not confirm.critical
    assert run.status == ScenarioStatus.COMPLETED
    assert run.verdict == ScenarioVerdict.DEGRADED


def test_wrong_token_leaves_run_untouched(make_engine):
    engine = make_engine(manual_scenario())
    before = engine.start("demo")

    with pytest.raises(ResumeTokenMismatch):
        engine.resume("demo", token="rebooted")

    assert engine.status("demo").to_dict() == before.to_dict()


def test_resume_without_run(make_engine):
    engine = make_engine(manual_scenario())
    with pytest.raises(ScenarioResumeWithoutCheckpoint) as excinfo:
        engine.resume("demo")
    assert isinstance(excinfo.value, NoScenarioRun)
    with pytest.raises(NoScenarioRun):
        engine.status("demo")


def test_second_start_is_refused_while_active(make_engine):
    engine = make_engine(manual_scenario())
    engine.start("demo")
    with pytest.raises(ScenarioAlreadyActive):
        engine.start("demo")


def test_finished_run_is_archived_by_next_start(make_engine):
    engine = make_engine(manual_scenario())
    engine.start("demo")
    first = engine.resume("demo")

    with pytest.raises(ScenarioNotResumable):
        engine.resume("demo")
    second = engine.start("demo")

    assert second.run_id != first.run_id
    archived = list(engine.store.history_dir.iterdir())
    assert [p.name for p in archived] == [f"demo-{first.run_id}.json"]


def test_locked_scenario_is_busy(make_engine):
    engine = make_engine(manual_scenario())
    with engine.store.lock("demo"):
        with pytest.raises(ScenarioBusy):
            engine.start("demo")
    assert engine.start("demo").status == ScenarioStatus.AWAITING_MANUAL_ACTION


def test_interrupted_run_resumes_at_next_step(make_engine):
    calls = []
    crashes = []

    def flaky_action(ctx):
        if not crashes:
            crashes.append(1)
            raise KeyboardInterrupt
        return {"done": True}

    scenario = Scenario(
        id="crashy",
        title="Crashy",
        purpose="Survive an interrupted process",
        steps=(
            check("first", calls=calls),
            Action("deploy", flaky_action),
            check("last", calls=calls),
        ),
    )
    engine = make_engine(scenario)

    with pytest.raises(KeyboardInterrupt):
        engine.start("crashy")
    stored = engine.status("crashy")
    assert stored.status == ScenarioStatus.IN_PROGRESS
    assert stored.last_completed_step == 0
    assert verdict_exit_code(stored) == 3

    run = engine.resume("crashy")

    assert calls == ["first", "last"]
    assert run.checkpoint["deploy"] == {"done": True}
    assert run.verdict == ScenarioVerdict.PASS


def test_changed_scenario_layout_is_corrupt(make_engine):
    make_engine(manual_scenario()).start("demo")
    changed = Scenario(
        id="demo",
        title="Demo",
        purpose="Exercise the run lifecycle",
        steps=(check("before"), check("extra"), unplug(), check("after")),
    )
    with pytest.raises(CheckpointCorrupt):
        make_engine(changed).resume("demo")


def test_abort_skips_steps_but_runs_cleanup(make_engine):
    calls = []
    cleaned = []
    scenario = Scenario(
        id="aborting",
        title="Aborting",
        purpose="Stop early on a broken precondition",
        steps=(
            check("precheck", failed("k3s inactive"), abort_on_fail=True),
            check("work", calls=calls),
            Wait(10, "settle"),
            Action("cleanup", lambda ctx: cleaned.append(1), always_run=True),
        ),
    )
    engine = make_engine(scenario)

    run = engine.start("aborting")

    assert run.aborted
    assert calls == []
    assert cleaned == [1]
    assert [(r.result.name, r.status, r.counted) for r in run.results] == [
        ("precheck", CheckStatus.FAIL, True),
        ("work", CheckStatus.SKIP, False),
        ("wait:10s", CheckStatus.SKIP, False),
        ("cleanup", CheckStatus.PASS, True),
    ]
    assert run.verdict == ScenarioVerdict.FAIL
    assert verdict_exit_code(run) == 2


def test_failing_action_aborts(make_engine):
    def explode(ctx):
        raise RuntimeError("kubectl apply failed")

    scenario = Scenario(
        id="broken-deploy",
        title="Broken deploy",
        purpose="Deploy failure handling",
        steps=(Action("deploy", explode), check("observe")),
    )
    run = make_engine(scenario).start("broken-deploy")

    assert run.aborted
    assert run.results[0].status == CheckStatus.FAIL
    assert run.results[0].result.message == "kubectl apply failed"
    assert run.results[1].status == CheckStatus.SKIP
    assert run.verdict == ScenarioVerdict.FAIL


def test_waits_sleep_and_are_not_counted(make_engine, sleeps):
    scenario = Scenario(
        id="waiting",
        title="Waiting",
        purpose="Settle between steps",
        steps=(check("a"), Wait(5, "settle"), check("b")),
    )
    run = make_engine(scenario).start("waiting")
    assert sleeps == [5]
    assert not run.results[1].counted
    assert run.verdict == ScenarioVerdict.PASS


def test_action_data_reaches_later_checks(make_engine):
    def observe(ctx):
        return passed(f"deleted at {ctx.notes['delete']['at']}")

    scenario = Scenario(
        id="notes",
        title="Notes",
        purpose="Pass facts between steps",
        steps=(
            Action("delete", lambda ctx: {"at": "12:00"}),
            AutomatedCheck(Probe(name="observe", check=observe)),
        ),
    )
    run = make_engine(scenario).start("notes")
    assert run.results[1].result.message == "deleted at 12:00"


def test_abandon_then_clear(make_engine):
    engine = make_engine(manual_scenario())
    engine.start("demo")

    run = engine.abandon("demo", "cable is glued in")

    assert run.status == ScenarioStatus.ABANDONED
    assert run.abandon_reason == "cable is glued in"
    assert run.resume_token is None
    assert verdict_exit_code(run) == 4
    with pytest.raises(ScenarioNotResumable):
        engine.resume("demo", token="unplugged")
    with pytest.raises(ScenarioNotResumable):
        engine.abandon("demo", "again")

    engine.clear("demo")
    with pytest.raises(NoScenarioRun):
        engine.status("demo")
    with pytest.raises(NoScenarioRun):
        engine.clear("demo")


def test_clear_refuses_active_run(make_engine):
    engine = make_engine(manual_scenario())
    engine.start("demo")
    with pytest.raises(ScenarioAlreadyActive):
        engine.clear("demo")


def test_abandon_without_run(make_engine):
    with pytest.raises(NoScenarioRun):
        make_engine(manual_scenario()).abandon("demo", "nothing there")


def test_corrupt_record_can_be_abandoned(make_engine):
    engine = make_engine(manual_scenario())
    engine.store.root.mkdir(parents=True)
    engine.store.path_for("demo").write_text("{truncated")

    with pytest.raises(CheckpointCorrupt):
        engine.resume("demo")
    assert engine.summaries()[0].error is not None

    run = engine.abandon("demo", "checkpoint damaged")

    assert run.status == ScenarioStatus.ABANDONED
    moved = run.checkpoint["corrupt_record"]
    assert ".corrupt-" in moved
    assert engine.status("demo").run_id == run.run_id
    assert engine.start("demo").status == ScenarioStatus.AWAITING_MANUAL_ACTION


def result(status, weight=1.0, critical=False, counted=True):
    return StepResult(
        index=0,
        kind="check",
        result=CheckResult(name="x", status=status, severity=Severity.ADVISORY),
        weight=weight,
        critical=critical,
        counted=counted,
    )


@pytest.mark.parametrize(
    "results, aborted, expected",
    [
        ([result(CheckStatus.PASS)] * 9 + [result(CheckStatus.WARN)], False, ScenarioVerdict.PASS),
        ([result(CheckStatus.PASS)] * 3 + [result(CheckStatus.WARN)], False, ScenarioVerdict.DEGRADED),
        ([result(CheckStatus.PASS), result(CheckStatus.FAIL, weight=0.05)], False, ScenarioVerdict.DEGRADED),
        ([result(CheckStatus.PASS)] * 9 + [result(CheckStatus.FAIL)], False, ScenarioVerdict.DEGRADED),
        ([result(CheckStatus.PASS)] * 5 + [result(CheckStatus.FAIL, critical=True)], False, ScenarioVerdict.FAIL),
        ([result(CheckStatus.FAIL, critical=True, counted=False), result(CheckStatus.PASS)], False, ScenarioVerdict.PASS),
        ([result(CheckStatus.PASS)], True, ScenarioVerdict.FAIL),
        ([], False, ScenarioVerdict.DEGRADED),
    ],
)
def test_scenario_verdict(results, aborted, expected):
    assert compute_scenario_verdict(results, 0.9, aborted) == expected


def test_duplicate_step_names_rejected():
    with pytest.raises(ValueError):
        Scenario(id="dup", title="", purpose="", steps=(check("a"), check("a")))
