"""통합 광고 조회 API."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from database.schemas import AdOut, AdQuery
from processor.analytics import query_ads, recent_ads

router = APIRouter(prefix="/api/ads", tags=["ads"])


@router.get("", response_model=list[AdOut])
async def list_ads(
    advertiser: str | None = None,
    network: str | None = None,
    session_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
    include_restricted: bool = True,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """광고 목록 (필터링 지원). 최초 발견 순."""
    return await query_ads(
        db,
        advertiser=advertiser,
        network=network,
        session_id=session_id,
        start=date_from,
        end=date_to,
        search=search,
        include_restricted=include_restricted,
        limit=limit,
        offset=offset,
    )


@router.get("/recent", response_model=list[AdOut])
async def list_recent_ads(
    minutes: int = Query(default=60, ge=1, le=7 * 24 * 60),
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    return await recent_ads(db, minutes=minutes, limit=limit)


@router.post("/query", response_model=list[AdOut])
async def search_ads(body: AdQuery, db: AsyncSession = Depends(get_db)):
    return await query_ads(db, **body.model_dump())
