"""통합 저장소 DB 모델: 세션 / 통합 광고 / 네트워크 통계. (SQLite/PostgreSQL 호환)"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# ─────────────────────────────────────────────
# 1. 워커 세션 (WorkerRun 아티팩트 1개 = 1행)
# ─────────────────────────────────────────────
class SessionRecord(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True)
    session_id = Column(String(120), nullable=False, unique=True)
    run_id = Column(String(60))
    worker_id = Column(Integer)
    target_url = Column(Text)
    device_mode = Column(String(20))
    budget = Column(String(40))
    status = Column(String(20))
    start_time = Column(DateTime)
    end_time = Column(DateTime)
    total_ads = Column(Integer, default=0)
    file_path = Column(Text)
    synced_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_sessions_run", "run_id"),
        Index("ix_sessions_start", "start_time"),
    )


# ─────────────────────────────────────────────
# 2. 통합 광고 (content_key 기준 1행, 재동기화 멱등)
# ─────────────────────────────────────────────
class ConsolidatedAd(Base):
    __tablename__ = "consolidated_ads"

    id = Column(Integer, primary_key=True)
    content_key = Column(String(40), nullable=False, unique=True)
    session_id = Column(String(120), nullable=False)
    ad_id = Column(String(40))
    container_id = Column(String(300))
    advertiser = Column(String(300))
    headline = Column(Text)
    body = Column(Text)
    image_url = Column(Text)
    link_url = Column(Text)
    network = Column(String(40))
    source_type = Column(String(60))
    size = Column(String(40))
    score = Column(Integer, default=0)
    restricted = Column(Boolean, default=False)
    position_top = Column(Float)
    position_left = Column(Float)
    width = Column(Float)
    height = Column(Float)
    visible = Column(Boolean, default=False)
    first_seen_at = Column(DateTime, nullable=False)
    last_seen_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_consolidated_ads_session", "session_id"),
        Index("ix_consolidated_ads_network", "network"),
        Index("ix_consolidated_ads_first_seen", "first_seen_at"),
        Index("ix_consolidated_ads_advertiser", "advertiser"),
    )


# ─────────────────────────────────────────────
# 3. 네트워크별 통계 (통합 광고에서 재계산)
# ─────────────────────────────────────────────
class AdNetworkStat(Base):
    __tablename__ = "ad_network_stats"

    id = Column(Integer, primary_key=True)
    network = Column(String(40), nullable=False, unique=True)
    total_ads = Column(Integer, default=0)
    last_seen_at = Column(DateTime)
    updated_at = Column(DateTime, default=datetime.utcnow)
