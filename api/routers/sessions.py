"""워커 세션 조회 API -- 디스크 아티팩트 인덱스 + 통합 저장소 세션 목록."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_store
from database import get_db
from database.models import SessionRecord
from database.schemas import SessionOut
from processor.session_store import SessionStore

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("", response_model=list[SessionOut])
async def list_sessions(
    run_id: str | None = None,
    status: str | None = None,
    limit: int = Query(default=50, le=500),
    db: AsyncSession = Depends(get_db),
):
    """통합 저장소에 동기화된 세션 목록 (최신순)."""
    query = select(SessionRecord).order_by(SessionRecord.start_time.desc())
    if run_id:
        query = query.where(SessionRecord.run_id == run_id)
    if status:
        query = query.where(SessionRecord.status == status)
    result = await db.execute(query.limit(limit))
    return result.scalars().all()


@router.get("/index")
async def session_index(store: SessionStore = Depends(get_store)):
    """디스크 인덱스 (아직 동기화 안 된 세션 포함)."""
    return store.load_index()


@router.get("/current")
async def current_session(store: SessionStore = Depends(get_store)):
    """가장 최근에 저장된 워커 런 스냅샷."""
    data = store.read_current()
    if data is None:
        raise HTTPException(status_code=404, detail="No session recorded yet")
    return data


@router.get("/{session_id}")
async def get_session(session_id: str, store: SessionStore = Depends(get_store)):
    path = store.artifact_path(session_id)
    if not path.exists():
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    try:
        return store.read(path)
    except ValueError:
        raise HTTPException(status_code=500, detail=f"Session {session_id} artifact is corrupt")
