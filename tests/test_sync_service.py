"""아티팩트 → 통합 저장소 동기화 테스트 (임시 SQLite)."""

import asyncio
import os
import sys
from datetime import datetime
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from crawler.ad_record import PROTECTED_ADVERTISER, PROTECTED_HEADLINE, AdRecord
from crawler.config import CrawlerSettings
from crawler.extraction_worker import ExtractionWorker
from crawler.time_controller import TimeController
from crawler.worker_run import COMPLETED, WorkerRun
from database import init_db
from database.models import AdNetworkStat, ConsolidatedAd, SessionRecord
from processor.session_store import SessionStore
from processor.sync_service import LOCK_STRIPES, SyncService, parse_timestamp
from tests.fakes import FakePage, FakeSource, restricted_item


@pytest_asyncio.fixture
async def db_factory(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'store.db'}",
        connect_args={"timeout": 30},
    )
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(tmp_path):
    return SessionStore(sessions_dir=tmp_path / "sessions")


def _ad(container_id, advertiser="Acme", headline="Big sale", network="native",
        detected_at="2026-03-01T10:00:00+00:00", last_seen_at="", restricted=False):
    return AdRecord(
        id=f"ad_{container_id}",
        container_id=container_id,
        source_type="native-container",
        network=network,
        advertiser=PROTECTED_ADVERTISER if restricted else advertiser,
        headline=PROTECTED_HEADLINE if restricted else headline,
        restricted=restricted,
        detected_at=detected_at,
        last_seen_at=last_seen_at,
    )


def _run(session_id, ads, run_id="multi_1"):
    run = WorkerRun(
        session_id=session_id,
        worker_id=int(session_id.split("_")[1]),
        target_url="https://www.newsbreak.com/chicago-il",
        run_id=run_id,
        start_time="2026-03-01T09:59:00+00:00",
    )
    run.merge(ads)
    run.transition(COMPLETED)
    return run


async def _count(factory, model):
    async with factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar_one()


def test_parse_timestamp_normalises_to_naive_utc():
    assert parse_timestamp("2026-03-01T19:00:00+09:00") == datetime(2026, 3, 1, 10, 0)
    assert parse_timestamp("2026-03-01T10:00:00Z") == datetime(2026, 3, 1, 10, 0)
    assert parse_timestamp("") is None
    assert parse_timestamp("yesterday") is None


@pytest.mark.asyncio
async def test_consolidate_is_idempotent(db_factory, store):
    paths = [
        store.write(_run("worker_0_1", [_ad("ForYou-1"), _ad("ForYou-2", advertiser="Beta")])),
        store.write(_run("worker_1_2", [_ad("ForYou-3", advertiser="Gamma", network="google")])),
    ]
    service = SyncService(session_factory=db_factory, store=store)

    first = await service.consolidate(paths)
    async with db_factory() as db:
        before = [(a.id, a.content_key) for a in (await db.execute(
            select(ConsolidatedAd).order_by(ConsolidatedAd.id))).scalars()]

    second = await service.consolidate(paths)
    async with db_factory() as db:
        after = [(a.id, a.content_key) for a in (await db.execute(
            select(ConsolidatedAd).order_by(ConsolidatedAd.id))).scalars()]

    assert first == {"sessions": 2, "inserted": 3, "existing": 0, "skipped": 0}
    assert second == {"sessions": 2, "inserted": 0, "existing": 3, "skipped": 0}
    assert before == after
    assert await _count(db_factory, SessionRecord) == 2


@pytest.mark.asyncio
async def test_same_content_across_sessions_keeps_seen_range(db_factory, store):
    early = _run("worker_0_1", [_ad("ForYou-1", detected_at="2026-03-01T10:00:00+00:00")])
    late = _run("worker_1_2", [_ad(
        "ForYou-1",
        detected_at="2026-03-01T12:00:00+00:00",
        last_seen_at="2026-03-01T12:30:00+00:00",
    )])
    service = SyncService(session_factory=db_factory, store=store)

    await service.consolidate([late, early])

    async with db_factory() as db:
        rows = (await db.execute(select(ConsolidatedAd))).scalars().all()
    assert len(rows) == 1
    assert rows[0].session_id == "worker_1_2"
    assert rows[0].first_seen_at == datetime(2026, 3, 1, 10, 0)
    assert rows[0].last_seen_at == datetime(2026, 3, 1, 12, 30)


@pytest.mark.asyncio
async def test_restricted_ads_keyed_per_session(db_factory, store):
    service = SyncService(session_factory=db_factory, store=store)
    await service.consolidate([
        _run("worker_0_1", [_ad("ForYou-9", restricted=True)]),
        _run("worker_1_2", [_ad("ForYou-9", restricted=True)]),
    ])

    async with db_factory() as db:
        rows = (await db.execute(select(ConsolidatedAd))).scalars().all()
    assert len(rows) == 2
    assert all(r.restricted and r.advertiser == PROTECTED_ADVERTISER for r in rows)


@pytest.mark.asyncio
async def test_network_stats_recomputed(db_factory, store):
    service = SyncService(session_factory=db_factory, store=store)
    run = _run("worker_0_1", [
        _ad("ForYou-1"),
        _ad("gpt-1", advertiser="G1", network="google"),
        _ad("gpt-2", advertiser="G2", network="google"),
    ])
    await service.sync_session(run)
    await service.sync_session(run)

    async with db_factory() as db:
        stats = {s.network: s.total_ads for s in (await db.execute(select(AdNetworkStat))).scalars()}
    assert stats == {"native": 1, "google": 2}


@pytest.mark.asyncio
async def test_corrupt_artifacts_are_skipped(db_factory, store, tmp_path):
    good = store.write(_run("worker_0_1", [_ad("ForYou-1")]))
    broken = tmp_path / "sessions" / "worker_9_9.json"
    broken.write_text("{truncated", encoding="utf-8")
    foreign = tmp_path / "sessions" / "notes.json"
    foreign.write_text('{"hello": "world"}', encoding="utf-8")

    result = await SyncService(session_factory=db_factory, store=store).consolidate([good, broken, foreign])

    assert result["sessions"] == 1
    assert result["skipped"] == 2
    assert await _count(db_factory, ConsolidatedAd) == 1


@pytest.mark.asyncio
async def test_concurrent_consolidation_does_not_duplicate(db_factory, store):
    runs = [
        _run(f"worker_{i}_{i}", [_ad("ForYou-shared"), _ad(f"ForYou-{i}", advertiser=f"A{i}")])
        for i in range(4)
    ]
    service = SyncService(session_factory=db_factory, store=store)

    await asyncio.gather(service.consolidate(runs), service.consolidate(list(reversed(runs))))

    # ForYou-shared 는 내용이 같으므로 1행, 나머지 4행
    assert await _count(db_factory, ConsolidatedAd) == 5
    assert await _count(db_factory, SessionRecord) == 4


@pytest.mark.asyncio
async def test_sync_new_data_only_picks_changed_artifacts(db_factory, store):
    service = SyncService(session_factory=db_factory, store=store)
    first = store.write(_run("worker_0_1", [_ad("ForYou-1")]))
    os.utime(first, (1_000_000, 1_000_000))

    assert (await service.sync_new_data())["sessions"] == 1
    assert (await service.sync_new_data())["sessions"] == 0

    second = store.write(_run("worker_1_2", [_ad("ForYou-2", advertiser="Beta")]))
    os.utime(second, (2_000_000, 2_000_000))
    result = await service.sync_new_data()

    assert result["sessions"] == 1
    assert result["inserted"] == 1
    assert await _count(db_factory, SessionRecord) == 2


@pytest.mark.asyncio
async def test_sync_all_existing_records_file_paths(db_factory, store):
    path = store.write(_run("worker_0_1", [_ad("ForYou-1")]))
    await SyncService(session_factory=db_factory, store=store).sync_all_existing()

    async with db_factory() as db:
        session = (await db.execute(select(SessionRecord))).scalar_one()
    assert session.file_path == str(path)
    assert session.status == COMPLETED
    assert session.total_ads == 1
    assert session.start_time == datetime(2026, 3, 1, 9, 59)


@pytest.mark.asyncio
async def test_resumed_restricted_ad_stays_one_row(db_factory, store):
    settings = CrawlerSettings(
        poll_interval_sec=0.05, launch_attempts=1, retry_delay_sec=0,
        save_every_polls=1, sessions_dir=str(store.sessions_dir),
    )
    source = FakeSource(page_factory=lambda index: FakePage(native=[restricted_item("ForYou-9")]))

    def worker(**kwargs):
        return ExtractionWorker(
            worker_id=0, target_url="https://www.newsbreak.com/chicago-il", source=source,
            store=store, time_controller=TimeController(0.15), settings=settings, **kwargs,
        )

    first = await worker().run()
    resumed = await worker(resume_from=store.artifact_path(first.session_id)).run()
    assert resumed.session_id != first.session_id
    assert resumed.ads[0].origin_session_id == first.session_id

    service = SyncService(session_factory=db_factory, store=store)
    result = await service.consolidate([
        store.artifact_path(first.session_id),
        store.artifact_path(resumed.session_id),
    ])

    assert result["sessions"] == 2
    assert await _count(db_factory, ConsolidatedAd) == 1


@pytest.mark.asyncio
async def test_lock_table_does_not_grow_with_keys(db_factory, store):
    service = SyncService(session_factory=db_factory, store=store)
    runs = [_run(f"worker_{i}_{i}", [_ad(f"ForYou-{i}-{j}", advertiser=f"A{i}{j}") for j in range(5)])
            for i in range(20)]

    await service.consolidate(runs)

    assert len(service._locks) == LOCK_STRIPES
    assert not any(lock.locked() for lock in service._locks)
    assert await _count(db_factory, ConsolidatedAd) == 100
