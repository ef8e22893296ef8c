import json
import os
import stat

import pytest

from edgenode_validate.errors import CheckpointCorrupt, ScenarioBusy
from edgenode_validate.scenarios import (
    CheckpointStore,
    ScenarioRun,
    ScenarioStatus,
    ScenarioVerdict,
    StepResult,
)
from edgenode_validate.verify import CheckResult, CheckStatus

from conftest import NOW


@pytest.fixture
def store(tmp_path):
    return CheckpointStore(tmp_path / "scenarios")


def make_run(scenario_id="reboot-recovery", run_id="a1b2c3", **kwargs):
    return ScenarioRun(
        scenario_id=scenario_id,
        run_id=run_id,
        started_at=NOW,
        updated_at=NOW,
        fingerprint="0123456789abcdef",
        **kwargs,
    )


def test_missing_record_loads_as_none(store):
    assert store.load("reboot-recovery") is None


def test_round_trip(store):
    run = make_run(
        status=ScenarioStatus.AWAITING_MANUAL_ACTION,
        last_completed_step=4,
        resume_token="rebooted",
        checkpoint={"manual:rebooted": {"boot_id": "boot-a"}},
        results=[
            StepResult(
                index=0,
                kind="check",
                result=CheckResult(
                    name="service-active",
                    status=CheckStatus.PASS,
                    message="k3s active",
                    started_at=NOW,
                ),
            )
        ],
    )
    path = store.save(run)

    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    loaded = store.load("reboot-recovery")
    assert loaded == run
    assert loaded.next_step == 5


def test_completed_round_trip(store):
    run = make_run(
        status=ScenarioStatus.COMPLETED,
        verdict=ScenarioVerdict.DEGRADED,
        completed_at=NOW,
    )
    store.save(run)
    assert store.load("reboot-recovery").verdict == ScenarioVerdict.DEGRADED


def test_failed_write_keeps_previous_record(store, monkeypatch):
    store.save(make_run(last_completed_step=1))

    def crash(src, dst):
        raise OSError("power lost")

    monkeypatch.setattr(os, "replace", crash)
    with pytest.raises(OSError):
        store.save(make_run(last_completed_step=2))
    monkeypatch.undo()

    assert store.load("reboot-recovery").last_completed_step == 1
    assert [p.name for p in store.root.iterdir()] == ["reboot-recovery.json"]


def test_torn_temp_write_keeps_previous_record(store, monkeypatch):
    store.save(make_run(last_completed_step=1))
    before = store.path_for("reboot-recovery").read_bytes()
    real_fdopen = os.fdopen

    class TornFile:
        def __init__(self, fd, mode):
            self.file = real_fdopen(fd, mode)

        def __enter__(self):
            return self

        def __exit__(self, *exc_info):
            self.file.close()

        def write(self, data):
            self.file.write(data[: len(data) // 2])
            self.file.flush()
            raise OSError("No space left on device")

    monkeypatch.setattr(os, "fdopen", TornFile)
    with pytest.raises(OSError):
        store.save(make_run(last_completed_step=2))
    monkeypatch.undo()

    assert store.path_for("reboot-recovery").read_bytes() == before
    assert store.load("reboot-recovery").last_completed_step == 1
    assert [p.name for p in store.root.iterdir()] == ["reboot-recovery.json"]


def test_failed_fsync_keeps_previous_record(store, monkeypatch):
    store.save(make_run(last_completed_step=1))
    before = store.path_for("reboot-recovery").read_bytes()

    def crash(fd):
        raise OSError("I/O error")

    monkeypatch.setattr(os, "fsync", crash)
    with pytest.raises(OSError):
        store.save(make_run(last_completed_step=2))
    monkeypatch.undo()

    assert store.path_for("reboot-recovery").read_bytes() == before
    assert [p.name for p in store.root.iterdir()] == ["reboot-recovery.json"]


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        json.dumps({"schema": 99, "scenario_id": "reboot-recovery"}),
        json.dumps({"schema": 1, "scenario_id": "reboot-recovery"}),
    ],
)
def test_unreadable_record_is_corrupt(store, content):
    store.root.mkdir(parents=True)
    store.path_for("reboot-recovery").write_text(content)
    with pytest.raises(CheckpointCorrupt):
        store.load("reboot-recovery")


def test_record_for_another_scenario_is_corrupt(store):
    store.save(make_run(scenario_id="power-loss"))
    os.rename(store.path_for("power-loss"), store.path_for("reboot-recovery"))
    with pytest.raises(CheckpointCorrupt) as excinfo:
        store.load("reboot-recovery")
    assert "power-loss" in excinfo.value.reason


def test_invalid_id_rejected(store):
    with pytest.raises(ValueError):
        store.path_for("../etc/passwd")


def test_lock_is_exclusive(store):
    with store.lock("reboot-recovery"):
        with pytest.raises(ScenarioBusy):
            with store.lock("reboot-recovery"):
                pass
        with store.lock("power-loss"):
            pass
    with store.lock("reboot-recovery"):
        pass


def test_archive_moves_record_into_history(store):
    run = make_run(status=ScenarioStatus.COMPLETED, verdict=ScenarioVerdict.PASS)
    store.save(run)

    target = store.archive(run)

    assert target == store.history_dir / "reboot-recovery-a1b2c3.json"
    assert store.load("reboot-recovery") is None
    assert json.loads(target.read_text())["verdict"] == "pass"


def test_quarantine_keeps_bad_record(store):
    store.root.mkdir(parents=True)
    store.path_for("reboot-recovery").write_text("garbage")

    moved = store.quarantine("reboot-recovery")

    assert moved.name.startswith("reboot-recovery.json.corrupt-")
    assert moved.read_text() == "garbage"
    assert store.load("reboot-recovery") is None


def test_delete(store):
    store.save(make_run())
    store.delete("reboot-recovery")
    store.delete("reboot-recovery")
    assert store.load("reboot-recovery") is None
