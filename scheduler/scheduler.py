"""APScheduler runner: periodic artifact → consolidated store sync."""

import os
from datetime import UTC, datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from processor.sync_service import SyncService, get_sync_service


def _env_bool(name: str, default: bool = True) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw.strip())
    except ValueError:
        return default
    return max(minimum, parsed)


class SyncScheduler:
    """풀 실행과 별개로 디스크의 새 아티팩트를 주기적으로 통합 저장소에 반영."""

    def __init__(self, sync_service: SyncService | None = None, interval_minutes: int | None = None):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.sync_service = sync_service or get_sync_service()
        self.interval_minutes = interval_minutes or _env_int(
            "SYNC_INTERVAL_MINUTES", default=10, minimum=1
        )
        self.sync_on_start = _env_bool("SYNC_ON_START", default=True)
        self.last_run_at: datetime | None = None
        self.last_result: dict = {}

    def setup_schedules(self):
        self.scheduler.add_job(
            self._run_sync,
            IntervalTrigger(minutes=self.interval_minutes),
            id="artifact_sync",
            name="artifact sync",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("[schedule] artifact sync every {} min", self.interval_minutes)

    async def run_initial_sync(self):
        """기동 시 1회 전체 재동기화 (이전 실행에서 못 넣은 아티팩트 복구)."""
        if not self.sync_on_start:
            return
        try:
            self.last_result = await self.sync_service.sync_all_existing()
            self.last_run_at = datetime.now(UTC)
        except Exception:
            logger.exception("[schedule] initial sync failed")

    async def _run_sync(self):
        try:
            self.last_result = await self.sync_service.sync_new_data()
            self.last_run_at = datetime.now(UTC)
        except Exception:
            logger.exception("[schedule] artifact sync failed")

    def start(self):
        """Start scheduler."""
        self.scheduler.start()
        logger.info("AdSweep sync scheduler started")

    def stop(self):
        """Stop scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("AdSweep sync scheduler stopped")
