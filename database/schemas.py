"""Pydantic 스키마 -- API 요청/응답 직렬화.

시각 필드는 모두 naive UTC (DB 저장 형식 그대로).
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from crawler.url_rotation import POLICIES, ROTATE_BY_CITY_LIST, SAME_URL


# ── Pool ──
class PoolStartRequest(BaseModel):
    worker_count: int = Field(default=5, ge=1, le=10, description="동시 워커 수 (1~10)")
    policy: str = ROTATE_BY_CITY_LIST
    target_url: str | None = None
    url_list: list[str] | None = None
    duration: str | int | None = Field(
        default=None, description='"30m", "2h", 초 단위 숫자, 또는 "unlimited"'
    )
    device_mode: str = Field(default="desktop", pattern="^(desktop|mobile)$")
    headless: bool | None = None
    poll_interval_sec: float | None = Field(default=None, gt=0)
    learn_rules: bool = False

    @model_validator(mode="after")
    def _check_policy(self):
        if self.policy not in POLICIES:
            raise ValueError(f"policy must be one of {POLICIES}")
        if self.policy == SAME_URL and not self.target_url:
            raise ValueError("same_url policy requires target_url")
        return self


class PoolStartOut(BaseModel):
    run_id: str
    status: dict


class PoolSummaryOut(BaseModel):
    run_id: str
    is_running: bool
    start_time: str


# ── Consolidated store ──
class SessionOut(BaseModel):
    session_id: str
    run_id: str | None = None
    worker_id: int | None = None
    target_url: str | None = None
    device_mode: str | None = None
    budget: str | None = None
    status: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    total_ads: int = 0
    file_path: str | None = None
    synced_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class AdOut(BaseModel):
    id: int
    content_key: str
    session_id: str
    ad_id: str | None = None
    container_id: str | None = None
    advertiser: str | None = None
    headline: str | None = None
    body: str | None = None
    image_url: str | None = None
    link_url: str | None = None
    network: str | None = None
    source_type: str | None = None
    size: str | None = None
    score: int = 0
    restricted: bool = False
    first_seen_at: datetime
    last_seen_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class AdQuery(BaseModel):
    advertiser: str | None = None
    network: str | None = None
    session_id: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    search: str | None = None
    include_restricted: bool = True
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


# ── Analytics ──
class NetworkCountOut(BaseModel):
    network: str
    total_ads: int
    last_seen_at: datetime | None = None


class SessionCountOut(BaseModel):
    session_id: str
    run_id: str | None = None
    worker_id: int | None = None
    status: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    consolidated_ads: int = 0


class DailyCountOut(BaseModel):
    date: str
    total_ads: int


# ── Sync ──
class SyncResultOut(BaseModel):
    sessions: int = 0
    inserted: int = 0
    existing: int = 0
    skipped: int = 0
