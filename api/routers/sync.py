"""통합 저장소 동기화 트리거 API."""

from fastapi import APIRouter, Depends

from api.deps import get_sync
from database.schemas import SyncResultOut
from processor.sync_service import SyncService

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("", response_model=SyncResultOut)
async def sync_new(service: SyncService = Depends(get_sync)):
    """마지막 동기화 이후 바뀐 아티팩트만."""
    return await service.sync_new_data()


@router.post("/all", response_model=SyncResultOut)
async def sync_all(service: SyncService = Depends(get_sync)):
    """디스크의 모든 아티팩트 재동기화 (멱등)."""
    return await service.sync_all_existing()
