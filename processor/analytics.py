"""통합 저장소 조회/집계 (읽기 전용).

네트워크별, 세션별, 일자별 광고 수와 필터 검색. 모든 함수는 AsyncSession 을 받아
SELECT 만 실행한다.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import ConsolidatedAd, SessionRecord

DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 1000


async def count_by_network(db: AsyncSession) -> list[dict]:
    rows = (await db.execute(
        select(
            ConsolidatedAd.network,
            func.count(ConsolidatedAd.id).label("total"),
            func.max(ConsolidatedAd.last_seen_at).label("last_seen"),
        )
        .group_by(ConsolidatedAd.network)
        .order_by(func.count(ConsolidatedAd.id).desc())
    )).all()
    return [
        {"network": r.network or "unknown", "total_ads": r.total, "last_seen_at": r.last_seen}
        for r in rows
    ]


async def count_by_session(db: AsyncSession, run_id: str | None = None) -> list[dict]:
    """세션별 통합 광고 수. 광고 0건 세션도 포함."""
    ad_counts = (
        select(ConsolidatedAd.session_id, func.count(ConsolidatedAd.id).label("total"))
        .group_by(ConsolidatedAd.session_id)
        .subquery()
    )
    query = (
        select(SessionRecord, func.coalesce(ad_counts.c.total, 0))
        .outerjoin(ad_counts, ad_counts.c.session_id == SessionRecord.session_id)
        .order_by(SessionRecord.start_time.desc())
    )
    if run_id:
        query = query.where(SessionRecord.run_id == run_id)
    rows = (await db.execute(query)).all()
    return [
        {
            "session_id": s.session_id,
            "run_id": s.run_id,
            "worker_id": s.worker_id,
            "status": s.status,
            "start_time": s.start_time,
            "end_time": s.end_time,
            "consolidated_ads": total,
        }
        for s, total in rows
    ]


async def daily_counts(db: AsyncSession, days: int = 7) -> list[dict]:
    """최근 N일 일자별 신규 광고 수 (first_seen 기준)."""
    since = datetime.utcnow() - timedelta(days=days)
    day = func.date(ConsolidatedAd.first_seen_at)
    rows = (await db.execute(
        select(day.label("day"), func.count(ConsolidatedAd.id).label("total"))
        .where(ConsolidatedAd.first_seen_at >= since)
        .group_by(day)
        .order_by(day)
    )).all()
    return [{"date": str(r.day), "total_ads": r.total} for r in rows]


async def recent_ads(db: AsyncSession, minutes: int = 60, limit: int = DEFAULT_QUERY_LIMIT):
    since = datetime.utcnow() - timedelta(minutes=minutes)
    result = await db.execute(
        select(ConsolidatedAd)
        .where(ConsolidatedAd.last_seen_at >= since)
        .order_by(ConsolidatedAd.last_seen_at.desc())
        .limit(min(limit, MAX_QUERY_LIMIT))
    )
    return result.scalars().all()


async def query_ads(
    db: AsyncSession,
    advertiser: str | None = None,
    network: str | None = None,
    session_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
    include_restricted: bool = True,
    limit: int = DEFAULT_QUERY_LIMIT,
    offset: int = 0,
):
    """필터 검색. 최초 발견 시각 오름차순 (저장 순서와 동일)."""
    query = select(ConsolidatedAd)
    if advertiser:
        query = query.where(ConsolidatedAd.advertiser.ilike(f"%{advertiser}%"))
    if network:
        query = query.where(ConsolidatedAd.network == network)
    if session_id:
        query = query.where(ConsolidatedAd.session_id == session_id)
    if start:
        query = query.where(ConsolidatedAd.first_seen_at >= start)
    if end:
        query = query.where(ConsolidatedAd.first_seen_at <= end)
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(
            ConsolidatedAd.headline.ilike(pattern),
            ConsolidatedAd.body.ilike(pattern),
            ConsolidatedAd.advertiser.ilike(pattern),
        ))
    if not include_restricted:
        query = query.where(ConsolidatedAd.restricted.is_(False))
    query = (
        query.order_by(ConsolidatedAd.first_seen_at, ConsolidatedAd.id)
        .offset(offset)
        .limit(min(limit, MAX_QUERY_LIMIT))
    )
    result = await db.execute(query)
    return result.scalars().all()
