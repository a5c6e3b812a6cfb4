"""워커 풀 오케스트레이터 / 컨트롤러 테스트 (가짜 브라우저 소스)."""

import asyncio
import sys
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from crawler.config import CrawlerSettings
from crawler.errors import PoolNotFoundError, PoolStartError
from crawler.learned_rules import LearnedRules, LearnedRuleStore
from crawler.url_rotation import SAME_URL
from crawler.worker_pool import PoolConfig, PoolController, WorkerPoolOrchestrator
from crawler.worker_run import COMPLETED, FAILED, LAUNCHING, STOPPED, TERMINAL_STATUSES, WorkerRun
from processor.session_store import SessionStore
from tests.fakes import FakePage, FakeSession, FakeSource, native_item

CITIES = [f"https://example.com/city-{i}" for i in range(3)]


def _settings(tmp_path, **overrides):
    values = dict(
        poll_interval_sec=0.05,
        evaluate_timeout_sec=1.0,
        launch_attempts=1,
        retry_delay_sec=0,
        reconnect_base_wait_sec=0,
        reconnect_step_sec=0,
        reconnect_max_wait_sec=0,
        persist_retry_delay_sec=0,
        save_every_polls=1,
        force_stop_timeout_sec=1.0,
        stats_interval_sec=0.1,
        sessions_dir=str(tmp_path / "sessions"),
    )
    values.update(overrides)
    return CrawlerSettings(**values)


def _page_factory(index):
    return FakePage(native=[native_item(f"ForYou-{index}-a"), native_item(f"ForYou-{index}-b", advertiser="Beta")])


def _pool(tmp_path, source=None, sync_service=None, rule_store=None, **overrides):
    settings = _settings(tmp_path, **overrides)
    return WorkerPoolOrchestrator(
        source=source or FakeSource(page_factory=_page_factory),
        store=SessionStore(sessions_dir=settings.sessions_dir),
        rule_store=rule_store,
        sync_service=sync_service,
        settings=settings,
    )


class RecordingSync:
    def __init__(self):
        self.calls = []

    async def consolidate(self, artifacts):
        paths = list(artifacts)
        self.calls.append(paths)
        return {"sessions": len(paths), "inserted": 0, "existing": 0, "skipped": 0}


async def _settle(pool, timeout=2.0):
    deadline = time.monotonic() + timeout
    while any(w.status == LAUNCHING for w in pool.workers.values()):
        assert time.monotonic() < deadline
        await asyncio.sleep(0.01)


def test_pool_config_validation():
    with pytest.raises(ValueError):
        PoolConfig(worker_count=0).validate(10)
    with pytest.raises(ValueError):
        PoolConfig(worker_count=11).validate(10)
    with pytest.raises(ValueError):
        PoolConfig(policy=SAME_URL).validate(10)
    with pytest.raises(ValueError):
        PoolConfig(policy="everywhere").validate(10)
    PoolConfig(worker_count=10).validate(10)


def test_pool_config_assigns_urls_round_robin():
    config = PoolConfig(worker_count=5, url_list=CITIES)
    assert config.assigned_urls() == CITIES + CITIES[:2]
    same = PoolConfig(worker_count=3, policy=SAME_URL, target_url=CITIES[1])
    assert same.assigned_urls() == [CITIES[1]] * 3


@pytest.mark.asyncio
async def test_stop_mid_poll_releases_every_session(tmp_path):
    source = FakeSource(page_factory=_page_factory)
    pool = _pool(tmp_path, source=source)

    run_id = await pool.start(PoolConfig(worker_count=5, url_list=CITIES, duration="unlimited"))
    assert run_id.startswith("multi_")
    await asyncio.sleep(0.3)

    status = await pool.stop()

    assert status["is_running"] is False
    assert status["stop_requested"] is True
    assert status["worker_count"] == 5
    assert all(w.status == STOPPED for w in pool.workers.values())
    assert len(source.sessions) == 5
    assert all(s.released for s in source.sessions)
    assert status["total_ads"] == 10
    for worker in pool.workers.values():
        assert pool.store.artifact_path(worker.session_id).exists()
    assert {w["url"] for w in status["workers"].values()} == set(CITIES)


@pytest.mark.asyncio
async def test_start_fails_when_no_worker_gets_a_browser(tmp_path):
    source = FakeSource(fail_all=True)
    pool = _pool(tmp_path, source=source)

    with pytest.raises(PoolStartError):
        await pool.start(PoolConfig(worker_count=3, url_list=CITIES))

    assert all(w.status == FAILED for w in pool.workers.values())
    assert not pool.is_running
    assert source.sessions == []


@pytest.mark.asyncio
async def test_failed_workers_excluded_from_active_count(tmp_path):
    source = FakeSource(page_factory=_page_factory, fail_workers={1, 3})
    pool = _pool(tmp_path, source=source)

    await pool.start(PoolConfig(worker_count=5, url_list=CITIES))
    await _settle(pool)
    status = pool.get_status()

    assert status["failed_workers"] == 2
    assert status["active_workers"] == 3
    assert pool.is_running

    await pool.stop()
    statuses = {i: w.status for i, w in pool.workers.items()}
    assert statuses == {0: STOPPED, 1: FAILED, 2: STOPPED, 3: FAILED, 4: STOPPED}


@pytest.mark.asyncio
async def test_shared_budget_completes_and_syncs(tmp_path):
    sync = RecordingSync()
    pool = _pool(tmp_path, sync_service=sync)

    await pool.start(PoolConfig(worker_count=2, url_list=CITIES, duration=0.3))
    await pool.wait(timeout=5)

    status = pool.get_status()
    assert all(w.status == COMPLETED for w in pool.workers.values())
    assert status["budget"]["expired"] is True
    assert len(sync.calls) == 1
    assert sorted(p.name for p in sync.calls[0]) == sorted(
        f"{w.session_id}.json" for w in pool.workers.values()
    )
    assert status["sync"]["sessions"] == 2


@pytest.mark.asyncio
async def test_sync_only_picks_this_runs_artifacts(tmp_path):
    sync = RecordingSync()
    pool = _pool(tmp_path, sync_service=sync)
    pool.store.write(WorkerRun(session_id="worker_0_1", worker_id=0, target_url=CITIES[0], run_id="multi_1"))

    await pool.start(PoolConfig(worker_count=2, url_list=CITIES, duration=0.2))
    await pool.wait(timeout=5)

    assert sorted(p.name for p in sync.calls[0]) == sorted(
        f"{w.session_id}.json" for w in pool.workers.values()
    )


class CountingRuleStore(LearnedRuleStore):
    def __init__(self, path):
        super().__init__(path)
        self.saves = 0

    def save(self, rules):
        self.saves += 1
        super().save(rules)


@pytest.mark.asyncio
async def test_learned_rules_merged_across_workers_and_saved_once(tmp_path):
    rule_store = CountingRuleStore(tmp_path / "learned_selectors.json")
    seed = LearnedRules(class_counts={"native-card": 5, "legacy": 3})
    rule_store.save(seed)
    rule_store.saves = 0
    pool = _pool(tmp_path, rule_store=rule_store)

    await pool.start(PoolConfig(worker_count=3, url_list=CITIES, duration=0.3, learn_rules=True))
    await pool.wait(timeout=5)

    assert rule_store.saves == 1
    saved = rule_store.load()
    per_worker = [w.engine.rules.class_counts["native-card"] - 5 for w in pool.workers.values()]
    assert all(n > 0 for n in per_worker)
    assert saved.class_counts["native-card"] == 5 + sum(per_worker)
    assert saved.class_counts["legacy"] == 3
    assert ".native-card" in saved.selectors


@pytest.mark.asyncio
async def test_learned_rules_untouched_when_learning_off(tmp_path):
    rule_store = CountingRuleStore(tmp_path / "learned_selectors.json")
    pool = _pool(tmp_path, rule_store=rule_store)

    await pool.start(PoolConfig(worker_count=1, url_list=CITIES, duration=0.1))
    await pool.wait(timeout=5)

    assert rule_store.saves == 0
    assert not rule_store.path.exists()


@pytest.mark.asyncio
async def test_sync_skipped_when_disabled(tmp_path):
    sync = RecordingSync()
    pool = _pool(tmp_path, sync_service=sync, sync_on_complete=False)

    await pool.start(PoolConfig(worker_count=1, url_list=CITIES, duration=0.1))
    await pool.wait(timeout=5)

    assert sync.calls == []


@pytest.mark.asyncio
async def test_concurrent_stop_calls_share_one_shutdown(tmp_path):
    pool = _pool(tmp_path)
    await pool.start(PoolConfig(worker_count=3, url_list=CITIES))

    first, second = await asyncio.gather(pool.stop(), pool.stop())
    third = await pool.stop()

    assert first["is_running"] is second["is_running"] is third["is_running"] is False
    assert all(w.status in TERMINAL_STATUSES for w in pool.workers.values())


@pytest.mark.asyncio
async def test_stuck_worker_is_forced_down(tmp_path):
    class StuckReleaseSession(FakeSession):
        async def release(self):
            await asyncio.Event().wait()

    class StuckSource(FakeSource):
        async def acquire(self, device, label, worker_index=0):
            session = StuckReleaseSession(label, page=_page_factory(worker_index))
            self.sessions.append(session)
            return session

    pool = _pool(tmp_path, source=StuckSource(), force_stop_timeout_sec=0.2)
    await pool.start(PoolConfig(worker_count=2, url_list=CITIES))

    started = time.monotonic()
    status = await asyncio.wait_for(pool.stop(), timeout=5)

    assert time.monotonic() - started < 3
    assert status["is_running"] is False
    assert all(w.status in TERMINAL_STATUSES for w in pool.workers.values())


@pytest.mark.asyncio
async def test_worker_status_and_logs(tmp_path):
    pool = _pool(tmp_path)
    await pool.start(PoolConfig(worker_count=2, url_list=CITIES))
    await asyncio.sleep(0.15)

    detail = pool.get_worker_status(1)
    assert detail["worker_id"] == 1
    assert detail["url"] == CITIES[1]
    assert isinstance(detail["logs"], list) and detail["logs"]

    assert pool.get_worker_logs(0, limit=1) == pool.get_worker_logs(0)[-1:]
    merged = pool.get_all_logs()
    assert {entry["worker_id"] for entry in merged} == {0, 1}
    assert [e["time"] for e in merged] == sorted(e["time"] for e in merged)

    with pytest.raises(PoolNotFoundError):
        pool.get_worker_status(7)
    await pool.stop()


@pytest.mark.asyncio
async def test_start_twice_rejected(tmp_path):
    pool = _pool(tmp_path)
    await pool.start(PoolConfig(worker_count=1, url_list=CITIES))
    with pytest.raises(PoolStartError):
        await pool.start(PoolConfig(worker_count=1, url_list=CITIES))
    await pool.stop()


@pytest.mark.asyncio
async def test_controller_tracks_pools_by_run_id(tmp_path):
    controller = PoolController(lambda: _pool(tmp_path))

    run_id = await controller.start_pool(PoolConfig(worker_count=2, url_list=CITIES))
    assert controller.get_pool_status(run_id)["run_id"] == run_id
    assert controller.get_worker_status(run_id, 0)["worker_id"] == 0
    assert [p["run_id"] for p in controller.list_pools()] == [run_id]

    with pytest.raises(PoolNotFoundError):
        controller.get_pool_status("multi_0")
    with pytest.raises(PoolNotFoundError):
        await controller.stop_pool("multi_0")

    await controller.shutdown()
    assert controller.get_pool_status(run_id)["is_running"] is False
    assert controller.get_all_logs(run_id)
