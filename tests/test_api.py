"""HTTP 제어면 테스트 (httpx ASGITransport, 가짜 브라우저 소스)."""

import asyncio
import sys
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import database
from api.deps import get_store, get_sync
from api.main import app, build_orchestrator
from crawler.ad_record import AdRecord
from crawler.config import CrawlerSettings, crawler_settings
from crawler.worker_pool import PoolController, WorkerPoolOrchestrator
from crawler.worker_run import COMPLETED, WorkerRun
from database import get_db, init_db
from processor.session_store import SessionStore
from processor.sync_service import SyncService
from tests.fakes import FakePage, FakeSource, native_item


@pytest.fixture
def store(tmp_path):
    return SessionStore(sessions_dir=tmp_path / "sessions")


@pytest_asyncio.fixture
async def client(tmp_path, store, monkeypatch):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    await init_db(engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    settings = CrawlerSettings(
        poll_interval_sec=0.05,
        launch_attempts=1,
        retry_delay_sec=0,
        persist_retry_delay_sec=0,
        force_stop_timeout_sec=1.0,
        stats_interval_sec=0.1,
        sessions_dir=str(store.sessions_dir),
    )
    sync = SyncService(session_factory=factory, store=store)
    source = FakeSource(page_factory=lambda index: FakePage(native=[native_item(f"ForYou-{index}")]))

    async def override_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_sync] = lambda: sync
    app.state.pool_controller = PoolController(lambda: WorkerPoolOrchestrator(
        source=source, store=store, sync_service=sync, settings=settings,
    ))
    app.state.sync_scheduler = None
    monkeypatch.setattr(database, "engine", engine)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http

    await app.state.pool_controller.shutdown()
    app.dependency_overrides.clear()
    await engine.dispose()


def _artifact(store, session_id="worker_0_1"):
    run = WorkerRun(session_id=session_id, worker_id=0, target_url="https://www.newsbreak.com/dallas-tx")
    run.merge([AdRecord(id="ad_1", container_id="ForYou-1", source_type="native-container",
                        advertiser="Acme", headline="Big sale")])
    run.transition(COMPLETED)
    return store.write(run)


@pytest.mark.asyncio
async def test_pool_lifecycle_over_http(client):
    resp = await client.post("/api/pool/start", json={"worker_count": 3, "duration": "unlimited"})
    assert resp.status_code == 202
    run_id = resp.json()["run_id"]
    assert run_id.startswith("multi_")

    await asyncio.sleep(0.2)
    status = (await client.get(f"/api/pool/{run_id}")).json()
    assert status["worker_count"] == 3
    assert status["is_running"] is True

    worker = (await client.get(f"/api/pool/{run_id}/workers/1")).json()
    assert worker["worker_id"] == 1
    logs = (await client.get(f"/api/pool/{run_id}/workers/1/logs", params={"limit": 2})).json()
    assert 1 <= len(logs) <= 2
    assert (await client.get(f"/api/pool/{run_id}/logs")).json()

    stopped = (await client.post(f"/api/pool/{run_id}/stop")).json()
    assert stopped["is_running"] is False
    assert {w["status"] for w in stopped["workers"].values()} == {"stopped"}
    assert [p["run_id"] for p in (await client.get("/api/pool")).json()] == [run_id]


@pytest.mark.asyncio
async def test_pool_start_validation(client):
    assert (await client.post("/api/pool/start", json={"worker_count": 11})).status_code == 422
    assert (await client.post("/api/pool/start", json={"worker_count": 0})).status_code == 422
    resp = await client.post("/api/pool/start", json={"policy": "same_url"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_pool_start_failure_is_503(client, store):
    app.state.pool_controller = PoolController(lambda: WorkerPoolOrchestrator(
        source=FakeSource(fail_all=True),
        store=store,
        settings=CrawlerSettings(launch_attempts=1, retry_delay_sec=0,
                                 sessions_dir=str(store.sessions_dir)),
    ))
    resp = await client.post("/api/pool/start", json={"worker_count": 2})
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_unknown_pool_is_404(client):
    assert (await client.get("/api/pool/multi_404")).status_code == 404
    assert (await client.post("/api/pool/multi_404/stop")).status_code == 404


@pytest.mark.asyncio
async def test_sync_then_query_ads(client, store):
    _artifact(store)

    synced = (await client.post("/api/sync/all")).json()
    assert synced["sessions"] == 1
    assert synced["inserted"] == 1

    ads = (await client.get("/api/ads", params={"advertiser": "acme"})).json()
    assert [a["advertiser"] for a in ads] == ["Acme"]
    queried = (await client.post("/api/ads/query", json={"network": "native", "limit": 5})).json()
    assert len(queried) == 1

    networks = (await client.get("/api/analytics/networks")).json()
    assert networks[0]["network"] == "native"
    sessions = (await client.get("/api/sessions")).json()
    assert sessions[0]["session_id"] == "worker_0_1"


@pytest.mark.asyncio
async def test_session_artifact_endpoints(client, store):
    assert (await client.get("/api/sessions/current")).status_code == 404
    _artifact(store)

    current = (await client.get("/api/sessions/current")).json()
    assert current["session_id"] == "worker_0_1"
    assert (await client.get("/api/sessions/index")).json()[0]["session_id"] == "worker_0_1"
    assert (await client.get("/api/sessions/worker_0_1")).json()["total_ads"] == 1
    assert (await client.get("/api/sessions/worker_9_9")).status_code == 404


@pytest.mark.asyncio
async def test_export_csv(client, store):
    _artifact(store)
    await client.post("/api/sync/all")

    resp = await client.get("/api/export/csv", params={"date_from": "2000-01-01T00:00:00"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    body = resp.text.lstrip("\ufeff")
    assert body.splitlines()[0].startswith('"id","timestamp","advertiser"')
    assert '"Acme","Big sale"' in body


@pytest.mark.asyncio
async def test_health(client):
    data = (await client.get("/api/health")).json()
    assert data["status"] == "ok"
    assert data["database"] == "connected"
    assert data["pools"] == 0


def test_api_orchestrator_persists_learned_rules(tmp_path, monkeypatch):
    monkeypatch.setattr(crawler_settings, "learned_rules_path", str(tmp_path / "learned_selectors.json"))
    sync = object()
    monkeypatch.setattr("api.main.get_sync_service", lambda: sync)

    orchestrator = build_orchestrator()

    assert orchestrator.rule_store is not None
    assert orchestrator.rule_store.path == tmp_path / "learned_selectors.json"
    assert orchestrator.sync_service is sync
