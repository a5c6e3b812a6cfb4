"""Export API -- consolidated ads as CSV / JSON."""

from datetime import datetime, timedelta, timezone
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from processor.analytics import MAX_QUERY_LIMIT, query_ads
from processor.export import to_csv, to_json

router = APIRouter(prefix="/api/export", tags=["export"])


def _today_str() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d")


def _safe_cd(filename: str) -> dict[str, str]:
    """RFC 5987 Content-Disposition with non-ASCII support."""
    ascii_name = filename.encode("ascii", "replace").decode("ascii").replace("?", "_")
    utf8_name = quote(filename, safe="")
    return {"Content-Disposition": f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{utf8_name}"}


def _default_date_range(date_from: datetime | None, date_to: datetime | None):
    if date_to is None:
        date_to = datetime.utcnow()
    if date_from is None:
        date_from = date_to - timedelta(days=30)
    return date_from, date_to


async def _load_ads(db, advertiser, network, session_id, date_from, date_to, limit):
    date_from, date_to = _default_date_range(date_from, date_to)
    return await query_ads(
        db,
        advertiser=advertiser,
        network=network,
        session_id=session_id,
        start=date_from,
        end=date_to,
        limit=limit,
    )


@router.get("/csv")
async def export_csv(
    advertiser: str | None = None,
    network: str | None = None,
    session_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = Query(default=MAX_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT),
    db: AsyncSession = Depends(get_db),
):
    """최근 30일 기본. 컬럼 순서 고정, 전 셀 따옴표."""
    ads = await _load_ads(db, advertiser, network, session_id, date_from, date_to, limit)
    return StreamingResponse(
        iter([to_csv(ads)]),
        media_type="text/csv; charset=utf-8",
        headers=_safe_cd(f"adsweep_ads_{_today_str()}.csv"),
    )


@router.get("/json")
async def export_json(
    advertiser: str | None = None,
    network: str | None = None,
    session_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = Query(default=MAX_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT),
    db: AsyncSession = Depends(get_db),
):
    ads = await _load_ads(db, advertiser, network, session_id, date_from, date_to, limit)
    return Response(
        content=to_json(ads),
        media_type="application/json",
        headers=_safe_cd(f"adsweep_ads_{_today_str()}.json"),
    )
