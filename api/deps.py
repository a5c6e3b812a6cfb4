"""Shared FastAPI dependencies."""

from fastapi import Request

from crawler.worker_pool import PoolController
from processor.session_store import SessionStore, get_session_store
from processor.sync_service import SyncService, get_sync_service


def get_pool_controller(request: Request) -> PoolController:
    """The process-wide pool controller created in the app lifespan."""
    return request.app.state.pool_controller


def get_store() -> SessionStore:
    return get_session_store()


def get_sync() -> SyncService:
    return get_sync_service()
