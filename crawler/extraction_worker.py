"""추출 워커: 브라우저 세션 1개를 소유하고 폴링 주기마다 광고를 검출한다.

상태: idle → launching → running → {completed | stopped | failed}
터미널 상태는 최종이며, 교체가 필요하면 오케스트레이터가 새 인스턴스를 만든다.

폴링 루프 안의 오류는 전부 상태/로그로 흡수된다. 호출자는 예외가 아니라
status 로 failed 를 관찰한다.
"""

from __future__ import annotations

import asyncio
import random
import time
from pathlib import Path

from loguru import logger

from crawler.ad_detector import AdDetectionEngine
from crawler.ad_record import AdRecord
from crawler.browser_source import BrowserSession, acquire_with_retry
from crawler.config import CrawlerSettings, crawler_settings
from crawler.device_config import get_device
from crawler.errors import NavigationError, SessionLostError
from crawler.time_controller import TimeController
from crawler.worker_run import (
    COMPLETED,
    FAILED,
    IDLE,
    LAUNCHING,
    RUNNING,
    STOPPED,
    WorkerRun,
)
from processor.session_store import ArtifactWriteError, SessionStore


class _StopRequested(Exception):
    """폴링 도중 stop() 이 들어와 진행 중 작업을 중단함."""


class ExtractionWorker:
    """워커 한 개. `await worker.run()` 이 수명 전체를 돈다."""

    def __init__(
        self,
        worker_id: int,
        target_url: str,
        source,
        store: SessionStore,
        engine: AdDetectionEngine | None = None,
        time_controller: TimeController | None = None,
        device_mode: str | None = None,
        run_id: str = "",
        poll_interval_sec: float | None = None,
        settings: CrawlerSettings | None = None,
        resume_from: str | Path | None = None,
        on_event=None,
    ):
        self.settings = settings or crawler_settings
        self.worker_id = worker_id
        self.label = f"worker-{worker_id}"
        self.source = source
        self.store = store
        self.engine = engine or AdDetectionEngine(evaluate_timeout_sec=self.settings.evaluate_timeout_sec)
        self.time_controller = time_controller or TimeController(None)
        self.device = get_device(device_mode or self.settings.device_mode)
        self.poll_interval_sec = poll_interval_sec or self.settings.poll_interval_sec
        self.on_event = on_event

        start_ms = int(time.time() * 1000)
        self.worker_run = WorkerRun(
            session_id=f"worker_{worker_id}_{start_ms}",
            worker_id=worker_id,
            run_id=run_id,
            target_url=target_url,
            device_mode=self.device.device_mode,
            budget=self.time_controller.label(),
            log_retention=self.settings.log_retention,
        )
        if resume_from:
            self._resume(resume_from)

        self._session: BrowserSession | None = None
        self._stop_event = asyncio.Event()
        self._done = asyncio.Event()
        self._launch_outcome: asyncio.Future | None = None
        self._dirty = False
        self._consecutive_errors = 0
        self._reconnect_attempts = 0
        self._summary: dict = {}
        self._publish()

    # ── 공개 상태 ──

    @property
    def status(self) -> str:
        return self.worker_run.status

    @property
    def session_id(self) -> str:
        return self.worker_run.session_id

    @property
    def session(self) -> BrowserSession | None:
        return self._session

    def summary(self) -> dict:
        """마지막으로 게시된 요약. 워커 내부 상태를 건드리지 않는다."""
        return dict(self._summary)

    def logs(self) -> list[dict]:
        return list(self._summary.get("logs", ()))

    def launch_outcome(self) -> asyncio.Future:
        """running 진입 시 True, 그 전에 끝나면 False 로 완료되는 future."""
        if self._launch_outcome is None:
            self._launch_outcome = asyncio.get_running_loop().create_future()
            if self.worker_run.status == RUNNING:
                self._launch_outcome.set_result(True)
            elif self.worker_run.terminal:
                self._launch_outcome.set_result(False)
        return self._launch_outcome

    def _resolve_launch(self, ok: bool):
        if self._launch_outcome is not None and not self._launch_outcome.done():
            self._launch_outcome.set_result(ok)

    def _publish(self):
        summary = self.worker_run.summary()
        summary["logs"] = tuple(self.worker_run.logs)
        self._summary = summary

    def _log(self, level: str, message: str):
        logger.log(level, "[{}] {}", self.label, message)
        self.worker_run.add_log(level.lower(), message)
        self._publish()

    def _emit(self, event_type: str, data: dict):
        if self.on_event is None:
            return
        try:
            self.on_event(self.worker_id, event_type, data)
        except Exception as e:
            logger.warning("[{}] 이벤트 콜백 오류: {}", self.label, e)

    def _set_status(self, status: str):
        self.worker_run.status = status
        self._publish()
        self._emit("status_update", {"status": status})

    def _resume(self, path: str | Path):
        """이전 아티팩트의 광고를 이어받아 중복 판정에 포함."""
        try:
            previous = self.store.read_run(path)
        except (OSError, ValueError, KeyError) as e:
            logger.warning("[{}] 이어받기 실패 ({}), 새로 시작: {}", self.label, path, e)
            return
        for ad in previous.ads:
            if not ad.origin_session_id:
                ad.origin_session_id = previous.session_id
        self.worker_run.merge(previous.ads)
        self.worker_run.idle_polls = previous.idle_polls
        self.worker_run.add_log("info", f"resumed {len(previous.ads)} ads from {previous.session_id}")

    # ── 수명 ──

    async def run(self) -> WorkerRun:
        if self.worker_run.status != IDLE:
            return self.worker_run
        if not self.time_controller.started:
            self.time_controller.start()
        self._set_status(LAUNCHING)
        self._log("INFO", f"시작: {self.worker_run.target_url} ({self.device.device_mode}, 예산 {self.worker_run.budget})")

        try:
            await self._interruptible(self._launch())
        except _StopRequested:
            await self._finish(STOPPED, "실행 중 중지 요청")
            return self.worker_run
        except asyncio.CancelledError:
            await self._on_cancelled()
            raise
        except Exception as e:
            await self._finish(FAILED, f"브라우저/이동 실패: {e}")
            return self.worker_run

        if self._stop_event.is_set():
            await self._finish(STOPPED, "실행 직후 중지 요청")
            return self.worker_run

        self._set_status(RUNNING)
        self._resolve_launch(True)

        try:
            await self._poll_loop()
        except asyncio.CancelledError:
            await self._on_cancelled()
            raise
        return self.worker_run

    async def stop(self, timeout: float | None = None) -> str:
        """중지 요청. 중복 호출은 효과 없음. 터미널 도달(또는 timeout)까지 대기."""
        if self.worker_run.status == IDLE:
            await self._finish(STOPPED, "시작 전 중지")
            return self.worker_run.status
        self.request_stop()
        if timeout is None:
            await self._done.wait()
        else:
            try:
                await asyncio.wait_for(self._done.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
        return self.worker_run.status

    def request_stop(self):
        """동기 신호만 보낸다. 다음 폴링 경계(또는 진행 중 작업 취소)에서 반영."""
        if not self._stop_event.is_set():
            self._stop_event.set()
            self._log("INFO", "중지 요청 수신")

    async def force_release(self):
        """오케스트레이터 강제 종료 경로: 세션 해제 + 가능한 경우 마지막 스냅샷 저장."""
        if not self.worker_run.terminal:
            self.worker_run.transition(STOPPED)
            self._log("WARNING", "강제 종료 (stop 타임아웃)")
        await self._release_session()
        await self._persist()
        self._resolve_launch(False)
        self._done.set()

    async def _on_cancelled(self):
        """task 취소 경로. 세션 해제와 마지막 저장은 추가 취소에도 끝까지 진행한다."""
        if self.worker_run.transition(STOPPED):
            self._log("WARNING", "작업 취소됨")
        self._resolve_launch(False)
        try:
            await asyncio.shield(self._release_and_persist())
        finally:
            self._publish()
            self._done.set()

    async def _release_and_persist(self):
        await self._release_session()
        await self._persist()

    async def _finish(self, status: str, reason: str):
        changed = self.worker_run.transition(status)
        if changed:
            level = "ERROR" if status == FAILED else "INFO"
            self._log(level, f"{status}: {reason} (광고 {len(self.worker_run.ads)}건, 오류 {self.worker_run.errors}건)")
            self._emit("status_update", {"status": status, "reason": reason})
        self._resolve_launch(False)
        await self._persist()
        await self._release_session()
        self._publish()
        self._done.set()

    async def _release_session(self):
        session, self._session = self._session, None
        if session is not None:
            await session.release()

    # ── 실행 / 이동 ──

    async def _launch(self):
        self._session = await acquire_with_retry(
            self.source,
            self.device,
            self.label,
            worker_index=self.worker_id,
            attempts=self.settings.launch_attempts,
            delay_sec=self.settings.retry_delay_sec,
        )
        await self._navigate_with_retry()

    async def _navigate_with_retry(self):
        attempts = self.settings.launch_attempts
        for attempt in range(1, attempts + 1):
            try:
                await self._session.navigate(
                    self.worker_run.target_url,
                    wait_until="networkidle",
                    timeout_ms=self.settings.navigation_timeout_ms,
                )
                return
            except NavigationError as e:
                self._log("WARNING", f"페이지 이동 실패 ({attempt}/{attempts}): {e}")
                if attempt == attempts:
                    raise
                await asyncio.sleep(self.settings.retry_delay_sec * attempt)

    # ── 폴링 ──

    async def _interruptible(self, coro):
        """stop() 이 먼저 오면 진행 중 작업을 취소하고 _StopRequested."""
        task = asyncio.ensure_future(coro)
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            stopper.cancel()
            raise
        if task in done:
            stopper.cancel()
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise _StopRequested()

    def _exit_status(self) -> str | None:
        if self._stop_event.is_set():
            return STOPPED
        if self.time_controller.expired():
            return COMPLETED
        return None

    async def _poll_loop(self):
        loop = asyncio.get_running_loop()
        while True:
            status = self._exit_status()
            if status is not None:
                reason = "중지 요청" if status == STOPPED else "실행 예산 만료"
                await self._finish(status, reason)
                return

            started = loop.time()
            try:
                await self._interruptible(self._poll_once())
                self._consecutive_errors = 0
            except _StopRequested:
                continue
            except Exception as e:
                self.worker_run.errors += 1
                self._consecutive_errors += 1
                self._log("WARNING", f"폴링 오류 #{self._consecutive_errors}: {e}")
                if self._consecutive_errors >= self.settings.max_consecutive_errors:
                    await self._finish(FAILED, f"연속 오류 {self._consecutive_errors}회")
                    return
                if self._session is None or not self._session.is_connected():
                    try:
                        reconnected = await self._interruptible(self._reconnect())
                    except _StopRequested:
                        continue
                    if not reconnected:
                        await self._finish(FAILED, "브라우저 세션 유실, 재연결 한도 초과")
                        return

            await self._sleep_remaining(started)

    async def _poll_once(self):
        if self._session is None or not self._session.is_connected():
            raise SessionLostError(f"{self.label}: 브라우저 세션 연결 끊김")
        self.worker_run.polls += 1
        records = await self.engine.detect(self._session, session_id=self.worker_run.session_id)
        added = self.worker_run.merge(records)
        if added:
            self.worker_run.idle_polls = 0
            self._on_new_ads(added)
        else:
            self.worker_run.idle_polls += 1
        self._publish()

        if added or self._dirty or self.worker_run.polls % max(1, self.settings.save_every_polls) == 0:
            await self._persist()
        await self._scroll()

    def _on_new_ads(self, added: list[AdRecord]):
        self._log("INFO", f"새 광고 {len(added)}건 (누적 {len(self.worker_run.ads)}건)")
        for ad in added:
            logger.debug("[{}]   {} | {}", self.label, ad.advertiser or ad.source_type, ad.headline or "-")
        self._emit("ads_update", {
            "total_ads": len(self.worker_run.ads),
            "new_ads": [ad.to_dict() for ad in added],
        })

    async def _scroll(self):
        """페이지 하단이면 새로고침, 아니면 400~1200px 스크롤."""
        try:
            info = await self._session.scroll_info()
            if info.get("atBottom"):
                self._log("INFO", "페이지 하단 도달, 새로고침")
                await self._session.reload(timeout_ms=self.settings.reload_timeout_ms)
            else:
                distance = random.randint(self.settings.scroll_min_px, self.settings.scroll_max_px)
                await self._session.scroll_by(distance)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug("[{}] 스크롤 오류: {}", self.label, e)

    async def _sleep_remaining(self, started: float):
        remaining = self.poll_interval_sec - (asyncio.get_running_loop().time() - started)
        if remaining <= 0:
            return
        if not self.time_controller.unlimited:
            budget_left = self.time_controller.remaining()
            if budget_left is not None and budget_left < remaining:
                remaining = budget_left
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=remaining)
        except asyncio.TimeoutError:
            pass

    async def _reconnect(self) -> bool:
        """세션 재획득. 대기 = min(base + n*step, max) 초."""
        max_attempts = self.settings.reconnect_max_attempts
        while self._reconnect_attempts < max_attempts:
            self._reconnect_attempts += 1
            wait = min(
                self.settings.reconnect_base_wait_sec + self._reconnect_attempts * self.settings.reconnect_step_sec,
                self.settings.reconnect_max_wait_sec,
            )
            self._log("WARNING", f"브라우저 연결 끊김, {wait:.0f}초 후 재연결 ({self._reconnect_attempts}/{max_attempts})")
            await self._persist()
            await self._release_session()
            await asyncio.sleep(wait)
            try:
                self._session = await self.source.acquire(self.device, self.label, self.worker_id)
                await self._navigate_with_retry()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log("WARNING", f"재연결 실패: {e}")
                continue
            self._log("INFO", "재연결 성공")
            self._consecutive_errors = max(0, self._consecutive_errors - 2)
            return True
        return False

    # ── 저장 ──

    async def _persist(self) -> bool:
        """한 번 재시도. 실패해도 메모리의 WorkerRun 은 유지하고 다음 저장에서 다시 시도."""
        snapshot = self.worker_run.to_dict()
        for attempt in (1, 2):
            try:
                await asyncio.to_thread(self.store.write, snapshot)
                self._dirty = False
                return True
            except ArtifactWriteError as e:
                if attempt == 1:
                    logger.warning("[{}] 아티팩트 저장 실패, 재시도: {}", self.label, e)
                    await asyncio.sleep(self.settings.persist_retry_delay_sec)
                else:
                    self._dirty = True
                    self._log("ERROR", f"아티팩트 저장 재시도 실패, 메모리 유지: {e}")
        return False
