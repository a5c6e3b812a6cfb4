"""통합 저장소 집계 API -- 네트워크별 / 세션별 / 일자별."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from database.schemas import DailyCountOut, NetworkCountOut, SessionCountOut
from processor.analytics import count_by_network, count_by_session, daily_counts

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("/networks", response_model=list[NetworkCountOut])
async def get_network_counts(db: AsyncSession = Depends(get_db)):
    return await count_by_network(db)


@router.get("/sessions", response_model=list[SessionCountOut])
async def get_session_counts(run_id: str | None = None, db: AsyncSession = Depends(get_db)):
    return await count_by_session(db, run_id=run_id)


@router.get("/daily", response_model=list[DailyCountOut])
async def get_daily_counts(
    days: int = Query(default=7, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    return await daily_counts(db, days=days)
