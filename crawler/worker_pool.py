"""워커 풀 오케스트레이터: N개 추출 워커를 동시에 띄우고 감독한다.

- 워커 = asyncio task 1개. 워커끼리는 가변 상태를 공유하지 않는다.
- 실패한 워커는 로그만 남기고 active 집계에서 제외한다 (자동 재시작 없음).
- stop() 은 협조적 중지 후 force_stop_timeout_sec 가 지나면 남은 세션을 강제 해제한다.
"""

from __future__ import annotations

import asyncio
import copy
import signal
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

from loguru import logger

from crawler.ad_detector import AdDetectionEngine
from crawler.browser_source import default_browser_source
from crawler.config import CrawlerSettings, crawler_settings
from crawler.errors import PoolNotFoundError, PoolStartError
from crawler.extraction_worker import ExtractionWorker
from crawler.learned_rules import LearnedRules, LearnedRuleStore
from crawler.time_controller import TimeController, create_time_controller, format_duration
from crawler.url_rotation import POLICIES, ROTATE_BY_CITY_LIST, SAME_URL, assign_url
from crawler.worker_run import ACTIVE_STATUSES, FAILED, TERMINAL_STATUSES
from processor.session_store import SessionStore, get_session_store


@dataclass
class PoolConfig:
    worker_count: int = 5
    policy: str = ROTATE_BY_CITY_LIST
    target_url: str | None = None
    url_list: list[str] | None = None
    duration: str | int | float | None = None  # None / "unlimited" → 무제한
    device_mode: str = "desktop"
    headless: bool | None = None
    poll_interval_sec: float | None = None
    learn_rules: bool = False

    def validate(self, max_workers: int):
        if not 1 <= self.worker_count <= max_workers:
            raise ValueError(f"worker_count must be between 1 and {max_workers}")
        if self.policy not in POLICIES:
            raise ValueError(f"policy must be one of {POLICIES}")
        if self.policy == SAME_URL and not self.target_url:
            raise ValueError("same_url policy requires target_url")
        if self.url_list is not None and not self.url_list:
            raise ValueError("url_list must not be empty")

    def assigned_urls(self) -> list[str]:
        return [
            assign_url(self.policy, i, target_url=self.target_url, url_list=self.url_list)
            for i in range(self.worker_count)
        ]


@dataclass
class _PoolState:
    run_id: str = ""
    start_time: str = ""
    started_at: float = 0.0
    finished_at: float | None = None
    stop_requested: bool = False
    sync_result: dict = field(default_factory=dict)


class WorkerPoolOrchestrator:
    """풀 한 번의 실행(PoolRun)을 소유."""

    def __init__(
        self,
        source=None,
        store: SessionStore | None = None,
        engine: AdDetectionEngine | None = None,
        rule_store: LearnedRuleStore | None = None,
        sync_service=None,
        settings: CrawlerSettings | None = None,
    ):
        self.settings = settings or crawler_settings
        self.source = source
        self.store = store or get_session_store()
        self.engine = engine
        self.rule_store = rule_store
        self.sync_service = sync_service

        self.config: PoolConfig | None = None
        self.time_controller: TimeController | None = None
        self.workers: dict[int, ExtractionWorker] = {}
        self._tasks: dict[int, asyncio.Task] = {}
        self._base_rules: LearnedRules | None = None
        self._supervisor: asyncio.Task | None = None
        self._stop_task: asyncio.Task | None = None
        self._state = _PoolState()

    @property
    def run_id(self) -> str:
        return self._state.run_id

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    # ── 시작 ──

    def _engine_for_worker(self, config: PoolConfig) -> AdDetectionEngine:
        if self.engine is not None:
            return self.engine.clone()
        rules = copy.deepcopy(self._base_rules) if self._base_rules is not None else None
        return AdDetectionEngine(
            rules=rules,
            learn=config.learn_rules,
            evaluate_timeout_sec=self.settings.evaluate_timeout_sec,
        )

    async def start(self, config: PoolConfig) -> str:
        """워커 생성/배정/디스패치. 첫 세션 확보(또는 전원 실패)까지만 기다린다.

        어떤 워커도 세션을 얻지 못하면 PoolStartError, 남는 워커는 없다.
        """
        if self._tasks:
            raise PoolStartError(f"pool {self.run_id} already started")
        config.validate(self.settings.max_workers)
        self.config = config
        self._state = _PoolState(
            run_id=f"multi_{int(time.time() * 1000)}",
            start_time=datetime.now(UTC).isoformat(),
            started_at=time.monotonic(),
        )
        self.time_controller = create_time_controller(config.duration).start()
        source = self.source or default_browser_source(headless=config.headless)
        if config.learn_rules and self.rule_store is not None and self.engine is None:
            self._base_rules = self.rule_store.load()

        for index, url in enumerate(config.assigned_urls()):
            worker = ExtractionWorker(
                worker_id=index,
                target_url=url,
                source=source,
                store=self.store,
                engine=self._engine_for_worker(config),
                time_controller=self.time_controller,
                device_mode=config.device_mode,
                run_id=self.run_id,
                poll_interval_sec=config.poll_interval_sec,
                settings=self.settings,
                on_event=self._on_worker_event,
            )
            self.workers[index] = worker

        outcomes = {w.launch_outcome(): w for w in self.workers.values()}
        for index, worker in self.workers.items():
            task = asyncio.create_task(worker.run(), name=f"{self.run_id}-worker-{index}")
            task.add_done_callback(lambda t, w=worker: self._on_worker_done(w, t))
            self._tasks[index] = task

        logger.info(
            "[pool] {} 시작: 워커 {}개, 정책 {}, 예산 {}",
            self.run_id, config.worker_count, config.policy, self.time_controller.label(),
        )

        pending = set(outcomes)
        launched = False
        while pending and not launched:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            launched = any(f.result() for f in done)

        if not launched:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
            for worker in self.workers.values():
                await worker.force_release()
            logger.error("[pool] {} 시작 실패: 브라우저 세션을 얻은 워커가 없음", self.run_id)
            raise PoolStartError("no worker could acquire a browser session")

        self._supervisor = asyncio.create_task(self._supervise(), name=f"{self.run_id}-supervisor")
        return self.run_id

    # ── 감독 ──

    def _on_worker_event(self, worker_id: int, event_type: str, data: dict):
        if event_type == "ads_update":
            logger.debug("[pool] worker-{} 누적 광고 {}건", worker_id, data.get("total_ads"))

    def _on_worker_done(self, worker: ExtractionWorker, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.opt(exception=error).error("[pool] worker-{} 예기치 않은 종료", worker.worker_id)
            return
        if worker.status == FAILED:
            logger.warning("[pool] worker-{} failed, active 집계에서 제외, 재시작하지 않음", worker.worker_id)

    async def _supervise(self):
        tasks = set(self._tasks.values())
        while True:
            done, pending = await asyncio.wait(tasks, timeout=self.settings.stats_interval_sec)
            if not pending:
                break
            self._log_stats()
        self._state.finished_at = time.monotonic()
        self._log_stats()
        await self._save_learned_rules()
        await self._sync_results()

    def _log_stats(self):
        status = self.get_status()
        logger.info(
            "[pool] {} 실행 {} | active {}/{} | 광고 {}건 | 오류 {}건",
            self.run_id, status["runtime"], status["active_workers"],
            status["worker_count"], status["total_ads"], status["total_errors"],
        )

    async def _save_learned_rules(self):
        """워커별 규칙 사본의 증가분을 합쳐 한 번만 저장."""
        if self._base_rules is None or self.rule_store is None:
            return
        merged = LearnedRules.merged(self._base_rules, [w.engine.rules for w in self.workers.values()])
        try:
            await asyncio.to_thread(self.rule_store.save, merged)
        except OSError as e:
            logger.warning("[pool] {} 학습 규칙 저장 실패: {}", self.run_id, e)
            return
        logger.info("[pool] {} 학습 규칙 저장: 셀렉터 {}개", self.run_id, len(merged.selectors))

    async def _sync_results(self):
        if self.sync_service is None or not self.settings.sync_on_complete:
            return
        paths = await asyncio.to_thread(self.store.runs_for, self.run_id)
        if not paths:
            return
        try:
            self._state.sync_result = await self.sync_service.consolidate(paths)
            logger.info("[pool] {} 통합 저장 완료: {}", self.run_id, self._state.sync_result)
        except Exception as e:
            logger.error("[pool] {} 통합 저장 실패 (아티팩트는 보존됨): {}", self.run_id, e)

    async def wait(self, timeout: float | None = None):
        """모든 워커가 끝날 때까지 대기 (CLI 용)."""
        if self._supervisor is not None:
            await asyncio.wait_for(asyncio.shield(self._supervisor), timeout=timeout)

    # ── 중지 ──

    async def stop(self) -> dict:
        """모든 워커에 동시에 중지 신호, 터미널 도달까지 대기. 여러 번 호출해도 같은 작업을 기다린다."""
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self._stop_all(), name=f"{self.run_id}-stop")
        await asyncio.shield(self._stop_task)
        return self.get_status()

    async def _stop_all(self):
        self._state.stop_requested = True
        if not self.workers:
            return
        logger.info("[pool] {} 중지 요청, 워커 {}개", self.run_id, len(self.workers))
        for worker in self.workers.values():
            worker.request_stop()

        timeout = self.settings.force_stop_timeout_sec
        running = [t for t in self._tasks.values() if not t.done()]
        if running:
            await asyncio.wait(running, timeout=timeout)

        stuck = [i for i, t in self._tasks.items() if not t.done()]
        for index in stuck:
            logger.warning("[pool] worker-{} {}초 안에 멈추지 않음, 강제 해제", index, timeout)
            self._tasks[index].cancel()
        if stuck:
            await asyncio.wait([self._tasks[i] for i in stuck], timeout=1.0)
        for worker in self.workers.values():
            if worker.session is not None or worker.status not in TERMINAL_STATUSES:
                await worker.force_release()

        if self._supervisor is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._supervisor), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("[pool] {} 통합 저장이 지연됨, 백그라운드에서 계속", self.run_id)
        logger.info("[pool] {} 중지 완료", self.run_id)

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None):
        """SIGINT/SIGTERM → stop(). 지원하지 않는 플랫폼이면 무시."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, lambda: asyncio.ensure_future(self.stop()))
            except (NotImplementedError, RuntimeError):
                logger.debug("[pool] signal handler 미지원: {}", sig)

    # ── 상태 ──

    def _runtime(self) -> float:
        if not self._state.started_at:
            return 0.0
        end = self._state.finished_at or time.monotonic()
        return end - self._state.started_at

    def get_status(self) -> dict:
        """게시된 워커 요약만 읽는 PoolRun 스냅샷."""
        workers = {}
        for worker_id, worker in self.workers.items():
            summary = worker.summary()
            summary.pop("logs", None)
            workers[worker_id] = summary
        config = asdict(self.config) if self.config else {}
        return {
            "run_id": self.run_id,
            "is_running": self.is_running,
            "stop_requested": self._state.stop_requested,
            "start_time": self._state.start_time,
            "runtime": format_duration(self._runtime()),
            "runtime_sec": round(self._runtime(), 1),
            "budget": self.time_controller.status() if self.time_controller else None,
            "policy": config.get("policy"),
            "worker_count": len(workers),
            "active_workers": sum(1 for s in workers.values() if s["status"] in ACTIVE_STATUSES),
            "failed_workers": sum(1 for s in workers.values() if s["status"] == FAILED),
            "total_ads": sum(s["ads_extracted"] for s in workers.values()),
            "total_errors": sum(s["errors"] for s in workers.values()),
            "workers": workers,
            "config": config,
            "sync": dict(self._state.sync_result),
        }

    def _worker(self, worker_id: int) -> ExtractionWorker:
        worker = self.workers.get(worker_id)
        if worker is None:
            raise PoolNotFoundError(f"worker {worker_id} not found in {self.run_id}")
        return worker

    def get_worker_status(self, worker_id: int) -> dict:
        worker = self._worker(worker_id)
        summary = worker.summary()
        summary["logs"] = list(summary.get("logs", ()))
        return summary

    def get_worker_logs(self, worker_id: int, limit: int | None = None) -> list[dict]:
        logs = self._worker(worker_id).logs()
        return logs[-limit:] if limit else logs

    def get_all_logs(self, limit: int | None = None) -> list[dict]:
        merged = [
            {**entry, "worker_id": worker_id}
            for worker_id, worker in self.workers.items()
            for entry in worker.logs()
        ]
        merged.sort(key=lambda e: e["time"])
        return merged[-limit:] if limit else merged


class PoolController:
    """runId 기반 제어면. HTTP/CLI 레이어가 호출한다."""

    HISTORY_LIMIT = 20

    def __init__(self, orchestrator_factory=None):
        self._factory = orchestrator_factory or WorkerPoolOrchestrator
        self._pools: dict[str, WorkerPoolOrchestrator] = {}

    def _get(self, run_id: str) -> WorkerPoolOrchestrator:
        pool = self._pools.get(run_id)
        if pool is None:
            raise PoolNotFoundError(f"pool {run_id} not found")
        return pool

    async def start_pool(self, config: PoolConfig) -> str:
        pool = self._factory()
        run_id = await pool.start(config)
        self._pools[run_id] = pool
        self._trim_history()
        return run_id

    def _trim_history(self):
        finished = [rid for rid, p in self._pools.items() if not p.is_running]
        while len(self._pools) > self.HISTORY_LIMIT and finished:
            self._pools.pop(finished.pop(0))

    async def stop_pool(self, run_id: str) -> dict:
        return await self._get(run_id).stop()

    def get_pool_status(self, run_id: str) -> dict:
        return self._get(run_id).get_status()

    def get_worker_status(self, run_id: str, worker_id: int) -> dict:
        return self._get(run_id).get_worker_status(worker_id)

    def get_worker_logs(self, run_id: str, worker_id: int, limit: int | None = None) -> list[dict]:
        return self._get(run_id).get_worker_logs(worker_id, limit)

    def get_all_logs(self, run_id: str, limit: int | None = None) -> list[dict]:
        return self._get(run_id).get_all_logs(limit)

    def list_pools(self) -> list[dict]:
        return [
            {"run_id": rid, "is_running": p.is_running, "start_time": p.get_status()["start_time"]}
            for rid, p in self._pools.items()
        ]

    async def shutdown(self):
        running = [p for p in self._pools.values() if p.is_running]
        if running:
            await asyncio.gather(*(p.stop() for p in running), return_exceptions=True)
