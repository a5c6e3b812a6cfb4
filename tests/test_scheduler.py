"""SyncScheduler 테스트 (잡 등록 / 실행 결과 기록)."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from scheduler.scheduler import SyncScheduler, _env_bool, _env_int


class _RecordingSync:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def sync_all_existing(self):
        self.calls.append("all")
        return {"sessions": 2, "inserted": 3, "existing": 0, "skipped": 0}

    async def sync_new_data(self):
        self.calls.append("new")
        if self.fail:
            raise RuntimeError("database is locked")
        return {"sessions": 1, "inserted": 0, "existing": 1, "skipped": 0}


def test_env_helpers(monkeypatch):
    monkeypatch.setenv("SYNC_ON_START", "no")
    monkeypatch.setenv("SYNC_INTERVAL_MINUTES", "0")
    assert _env_bool("SYNC_ON_START") is False
    assert _env_int("SYNC_INTERVAL_MINUTES", default=10, minimum=1) == 1
    monkeypatch.setenv("SYNC_INTERVAL_MINUTES", "abc")
    assert _env_int("SYNC_INTERVAL_MINUTES", default=10) == 10
    monkeypatch.delenv("SYNC_ON_START")
    assert _env_bool("SYNC_ON_START", default=True) is True


def test_interval_job_registered(monkeypatch):
    monkeypatch.setenv("SYNC_INTERVAL_MINUTES", "3")
    sched = SyncScheduler(sync_service=_RecordingSync())
    sched.setup_schedules()

    job = sched.scheduler.get_job("artifact_sync")
    assert job is not None
    assert sched.interval_minutes == 3
    assert job.trigger.interval.total_seconds() == 180


@pytest.mark.asyncio
async def test_initial_sync_and_incremental_runs():
    sync = _RecordingSync()
    sched = SyncScheduler(sync_service=sync, interval_minutes=5)

    await sched.run_initial_sync()
    assert sched.last_result["inserted"] == 3
    await sched._run_sync()

    assert sync.calls == ["all", "new"]
    assert sched.last_result["existing"] == 1
    assert sched.last_run_at is not None


@pytest.mark.asyncio
async def test_initial_sync_can_be_disabled(monkeypatch):
    monkeypatch.setenv("SYNC_ON_START", "false")
    sync = _RecordingSync()
    sched = SyncScheduler(sync_service=sync)

    await sched.run_initial_sync()

    assert sync.calls == []
    assert sched.last_run_at is None


@pytest.mark.asyncio
async def test_failed_sync_is_logged_not_raised():
    sched = SyncScheduler(sync_service=_RecordingSync(fail=True), interval_minutes=5)
    await sched._run_sync()
    assert sched.last_run_at is None
    assert sched.last_result == {}
