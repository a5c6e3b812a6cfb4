"""FastAPI app entrypoint."""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from api.logging_config import setup_logging
from api.routers import ads, analytics, export, pool, sessions, sync
from crawler.config import crawler_settings
from crawler.errors import PoolNotFoundError, PoolStartError
from crawler.learned_rules import LearnedRuleStore
from crawler.worker_pool import PoolController, WorkerPoolOrchestrator
from database import init_db
from processor.sync_service import get_sync_service
from scheduler.scheduler import SyncScheduler, _env_bool

logger = logging.getLogger("adsweep.api")

VERSION = "0.1.0"


def build_orchestrator() -> WorkerPoolOrchestrator:
    """One orchestrator per pool start; learned rules are persisted when a pool asks to learn."""
    return WorkerPoolOrchestrator(
        sync_service=get_sync_service(),
        rule_store=LearnedRuleStore(crawler_settings.learned_rules_path),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """앱 시작/종료 시 DB 초기화 + 풀 컨트롤러 + 동기화 스케줄러."""
    setup_logging()
    logger.info("AdSweep API starting up")
    await init_db()
    app.state.pool_controller = PoolController(build_orchestrator)

    scheduler = None
    if _env_bool("ENABLE_SYNC_SCHEDULER", default=True):
        scheduler = SyncScheduler()
        await scheduler.run_initial_sync()
        scheduler.setup_schedules()
        scheduler.start()
    app.state.sync_scheduler = scheduler
    try:
        yield
    finally:
        logger.info("AdSweep API shutting down")
        await app.state.pool_controller.shutdown()
        if scheduler is not None:
            scheduler.stop()
        from database import engine
        await engine.dispose()
        logger.info("Database engine disposed")


app = FastAPI(
    title="AdSweep API",
    description="Native ad extraction worker pool + consolidated ad store",
    version=VERSION,
    lifespan=lifespan,
    redirect_slashes=False,
)

_cors_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000")
CORS_ORIGINS = [o.strip() for o in _cors_origins.split(",") if o.strip()]


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration = time.time() - start
        logger.info(
            "%s %s -> %d (%.2fs)",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response


app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Domain exception handlers
# ---------------------------------------------------------------------------
@app.exception_handler(PoolNotFoundError)
async def pool_not_found_handler(request: Request, exc: PoolNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PoolStartError)
async def pool_start_handler(request: Request, exc: PoolStartError):
    logger.warning("Pool start failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


app.include_router(pool.router)
app.include_router(sessions.router)
app.include_router(ads.router)
app.include_router(analytics.router)
app.include_router(export.router)
app.include_router(sync.router)


@app.get("/", include_in_schema=False)
async def root():
    """Redirect to API docs."""
    from fastapi.responses import RedirectResponse
    return RedirectResponse(url="/docs")


@app.get("/api/health")
async def health(request: Request):
    from database import engine

    health_status = {"status": "ok", "service": "adsweep-api", "version": VERSION}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["status"] = "degraded"
        health_status["database"] = f"error: {e}"

    controller = getattr(request.app.state, "pool_controller", None)
    if controller is not None:
        pools = controller.list_pools()
        health_status["pools"] = len(pools)
        health_status["running_pools"] = sum(1 for p in pools if p["is_running"])

    scheduler = getattr(request.app.state, "sync_scheduler", None)
    if scheduler is not None and scheduler.last_run_at is not None:
        health_status["last_sync_at"] = scheduler.last_run_at.isoformat()
    return health_status
