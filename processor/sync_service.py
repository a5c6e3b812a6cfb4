"""워커 런 아티팩트 → 통합 저장소 동기화.

content_key 기준 upsert 라서 같은 아티팩트를 몇 번 다시 넣어도 결과가 같다.
이미 있는 행은 first/last_seen 범위만 넓히고, 삭제/재정렬하지 않는다.
같은 키에 대한 쓰기는 고정 개수의 줄무늬(striped) asyncio.Lock 으로 직렬화한다.
키 → 줄무늬는 sha1 기준이라 프로세스 수명 동안 잠금 수가 늘지 않는다.
"""

from __future__ import annotations

import asyncio
import hashlib
from contextlib import AsyncExitStack
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crawler.ad_record import AdRecord
from crawler.worker_run import WorkerRun
from database import async_session
from database.models import AdNetworkStat, ConsolidatedAd, SessionRecord
from processor.session_store import SessionStore, get_session_store

LOCK_STRIPES = 64


def parse_timestamp(value) -> datetime | None:
    """ISO 문자열 → naive UTC datetime (SQLite 저장 형식)."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC).replace(tzinfo=None)
    return dt


class SyncService:
    def __init__(self, session_factory=None, store: SessionStore | None = None):
        self.session_factory = session_factory or async_session
        self.store = store or get_session_store()
        self._locks = [asyncio.Lock() for _ in range(LOCK_STRIPES)]
        self._stats_lock = asyncio.Lock()
        self._last_sync_mtime: float | None = None

    @staticmethod
    def _stripe(key: str) -> int:
        return int(hashlib.sha1(key.encode("utf-8")).hexdigest()[:8], 16) % LOCK_STRIPES

    # ── 단건 ──

    async def sync_session(self, run: WorkerRun | dict, file_path: str | None = None,
                           refresh_stats: bool = True) -> dict:
        """WorkerRun 한 개 upsert. 이미 동기화된 레코드는 no-op."""
        data = run.to_dict() if isinstance(run, WorkerRun) else run
        session_id = str(data["session_id"])
        keyed: dict[str, AdRecord] = {}
        for raw in data.get("ads") or []:
            ad = AdRecord.from_dict(raw)
            keyed.setdefault(ad.content_key(session_id), ad)

        inserted = updated = 0
        async with AsyncExitStack() as stack:
            # 줄무늬 번호 오름차순, 중복 없이 (asyncio.Lock 은 재진입 불가)
            stripes = {self._stripe(f"session:{session_id}")} | {self._stripe(k) for k in keyed}
            for stripe in sorted(stripes):
                await stack.enter_async_context(self._locks[stripe])
            async with self.session_factory() as db:
                await self._upsert_session(db, data, file_path)
                for key, ad in keyed.items():
                    if await self._upsert_ad(db, key, session_id, ad):
                        inserted += 1
                    else:
                        updated += 1
                await db.commit()

        if refresh_stats:
            await self.refresh_network_stats()
        logger.debug("[sync] {} 신규 {} / 기존 {}", session_id, inserted, updated)
        return {"session_id": session_id, "inserted": inserted, "existing": updated}

    async def _upsert_session(self, db: AsyncSession, data: dict, file_path: str | None):
        result = await db.execute(
            select(SessionRecord).where(SessionRecord.session_id == data["session_id"])
        )
        row = result.scalar_one_or_none()
        values = {
            "run_id": data.get("run_id") or None,
            "worker_id": data.get("worker_id"),
            "target_url": data.get("target_url"),
            "device_mode": data.get("device_mode"),
            "budget": data.get("budget"),
            "status": data.get("status"),
            "start_time": parse_timestamp(data.get("start_time")),
            "end_time": parse_timestamp(data.get("end_time")),
            "total_ads": len(data.get("ads") or []),
        }
        if file_path:
            values["file_path"] = str(file_path)
        if row is None:
            db.add(SessionRecord(session_id=data["session_id"], **values))
            return
        for name, value in values.items():
            setattr(row, name, value)

    async def _upsert_ad(self, db: AsyncSession, key: str, session_id: str, ad: AdRecord) -> bool:
        """새로 넣었으면 True."""
        result = await db.execute(select(ConsolidatedAd).where(ConsolidatedAd.content_key == key))
        row = result.scalar_one_or_none()
        first_seen = parse_timestamp(ad.detected_at) or datetime.utcnow()
        last_seen = parse_timestamp(ad.last_seen_at) or first_seen

        if row is not None:
            if row.first_seen_at is None or first_seen < row.first_seen_at:
                row.first_seen_at = first_seen
            if row.last_seen_at is None or last_seen > row.last_seen_at:
                row.last_seen_at = last_seen
            return False

        db.add(ConsolidatedAd(
            content_key=key,
            session_id=session_id,
            ad_id=ad.id,
            container_id=ad.container_id,
            advertiser=ad.advertiser,
            headline=ad.headline,
            body=ad.body,
            image_url=ad.image,
            link_url=ad.link,
            network=ad.network,
            source_type=ad.source_type,
            size=ad.size,
            score=ad.score,
            restricted=ad.restricted,
            position_top=ad.position.top,
            position_left=ad.position.left,
            width=ad.position.width,
            height=ad.position.height,
            visible=ad.position.visible,
            first_seen_at=first_seen,
            last_seen_at=last_seen,
        ))
        # 같은 배치 안의 다음 select 가 이 행을 보도록
        await db.flush()
        return True

    async def refresh_network_stats(self):
        """ad_network_stats 를 consolidated_ads 에서 다시 계산."""
        async with self._stats_lock, self.session_factory() as db:
            rows = (await db.execute(
                select(
                    ConsolidatedAd.network,
                    func.count(ConsolidatedAd.id),
                    func.max(ConsolidatedAd.last_seen_at),
                ).group_by(ConsolidatedAd.network)
            )).all()
            existing = {
                s.network: s for s in (await db.execute(select(AdNetworkStat))).scalars()
            }
            for network, total, last_seen in rows:
                network = network or "unknown"
                stat = existing.get(network)
                if stat is None:
                    db.add(AdNetworkStat(network=network, total_ads=total, last_seen_at=last_seen))
                else:
                    stat.total_ads = total
                    stat.last_seen_at = last_seen
                    stat.updated_at = datetime.utcnow()
            await db.commit()

    # ── 배치 ──

    async def consolidate(self, artifacts) -> dict:
        """경로 / dict / WorkerRun 목록을 모두 동기화. 손상 아티팩트는 건너뛴다."""
        totals = {"sessions": 0, "inserted": 0, "existing": 0, "skipped": 0}
        for item in artifacts:
            file_path = None
            if isinstance(item, (str, Path)):
                file_path = str(item)
                try:
                    item = self.store.read(item)
                except (OSError, ValueError) as e:
                    logger.warning("[sync] {} 읽기 실패, 건너뜀: {}", file_path, e)
                    totals["skipped"] += 1
                    continue
            if isinstance(item, dict) and "session_id" not in item:
                logger.warning("[sync] session_id 없는 아티팩트 건너뜀: {}", file_path)
                totals["skipped"] += 1
                continue
            result = await self.sync_session(item, file_path=file_path, refresh_stats=False)
            totals["sessions"] += 1
            totals["inserted"] += result["inserted"]
            totals["existing"] += result["existing"]
        if totals["sessions"]:
            await self.refresh_network_stats()
        logger.info(
            "[sync] 세션 {}개, 신규 광고 {}건, 기존 {}건, 건너뜀 {}",
            totals["sessions"], totals["inserted"], totals["existing"], totals["skipped"],
        )
        return totals

    async def sync_all_existing(self) -> dict:
        """디스크의 모든 아티팩트 재동기화 (장애 복구용)."""
        paths = self.store.list_artifacts()
        result = await self.consolidate(paths)
        if paths:
            self._last_sync_mtime = max(p.stat().st_mtime for p in paths)
        return result

    async def sync_new_data(self) -> dict:
        """지난 동기화 이후 수정된 아티팩트만."""
        paths = self.store.list_artifacts(since=self._last_sync_mtime)
        if not paths:
            return {"sessions": 0, "inserted": 0, "existing": 0, "skipped": 0}
        mtimes = [p.stat().st_mtime for p in paths]
        result = await self.consolidate(paths)
        self._last_sync_mtime = max(mtimes)
        return result


_service: SyncService | None = None


def get_sync_service() -> SyncService:
    global _service
    if _service is None:
        _service = SyncService()
    return _service
