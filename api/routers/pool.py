"""워커 풀 제어 API -- 시작 / 중지 / 상태 / 로그."""

from fastapi import APIRouter, Depends, HTTPException, Query

from api.deps import get_pool_controller
from crawler.worker_pool import PoolConfig, PoolController
from database.schemas import PoolStartOut, PoolStartRequest, PoolSummaryOut

router = APIRouter(prefix="/api/pool", tags=["pool"])


@router.post("/start", response_model=PoolStartOut, status_code=202)
async def start_pool(
    body: PoolStartRequest,
    controller: PoolController = Depends(get_pool_controller),
):
    """풀 시작. 첫 워커가 세션을 확보하면 바로 runId 반환 (나머지는 백그라운드)."""
    try:
        run_id = await controller.start_pool(PoolConfig(**body.model_dump()))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return PoolStartOut(run_id=run_id, status=controller.get_pool_status(run_id))


@router.get("", response_model=list[PoolSummaryOut])
async def list_pools(controller: PoolController = Depends(get_pool_controller)):
    return controller.list_pools()


@router.post("/{run_id}/stop")
async def stop_pool(run_id: str, controller: PoolController = Depends(get_pool_controller)):
    """모든 워커 중지. 전원 터미널 상태가 되면 최종 상태 반환."""
    return await controller.stop_pool(run_id)


@router.get("/{run_id}")
async def get_pool_status(run_id: str, controller: PoolController = Depends(get_pool_controller)):
    return controller.get_pool_status(run_id)


@router.get("/{run_id}/logs")
async def get_pool_logs(
    run_id: str,
    limit: int | None = Query(default=None, ge=1, le=1000),
    controller: PoolController = Depends(get_pool_controller),
):
    return controller.get_all_logs(run_id, limit)


@router.get("/{run_id}/workers/{worker_id}")
async def get_worker_status(
    run_id: str,
    worker_id: int,
    controller: PoolController = Depends(get_pool_controller),
):
    return controller.get_worker_status(run_id, worker_id)


@router.get("/{run_id}/workers/{worker_id}/logs")
async def get_worker_logs(
    run_id: str,
    worker_id: int,
    limit: int | None = Query(default=None, ge=1, le=50),
    controller: PoolController = Depends(get_pool_controller),
):
    return controller.get_worker_logs(run_id, worker_id, limit)
