"""WorkerRun: 워커 한 개의 수명 동안 누적되는 결과 세트."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime

from crawler.ad_record import AdRecord

IDLE = "idle"
LAUNCHING = "launching"
RUNNING = "running"
COMPLETED = "completed"
STOPPED = "stopped"
FAILED = "failed"

TERMINAL_STATUSES = frozenset({COMPLETED, STOPPED, FAILED})
ACTIVE_STATUSES = frozenset({LAUNCHING, RUNNING})

DEFAULT_LOG_RETENTION = 50


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class WorkerRun:
    session_id: str
    worker_id: int
    target_url: str
    device_mode: str = "desktop"
    budget: str = "unlimited"
    run_id: str = ""
    status: str = IDLE
    start_time: str = field(default_factory=_now_iso)
    end_time: str | None = None
    ads: list[AdRecord] = field(default_factory=list)
    errors: int = 0
    polls: int = 0
    idle_polls: int = 0
    log_retention: int = DEFAULT_LOG_RETENTION
    logs: deque = field(default=None)

    def __post_init__(self):
        if self.logs is None:
            self.logs = deque(maxlen=self.log_retention)
        elif not isinstance(self.logs, deque):
            self.logs = deque(self.logs, maxlen=self.log_retention)
        self._by_container = {ad.container_id: ad for ad in self.ads}

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def total_ads(self) -> int:
        return len(self.ads)

    def add_log(self, level: str, message: str):
        self.logs.append({"time": _now_iso(), "level": level, "message": message})

    def merge(self, records: list[AdRecord]) -> list[AdRecord]:
        """새 containerId 만 추가(검출 순서 유지), 기존 것은 갱신만. 추가된 레코드 반환."""
        added = []
        for record in records:
            existing = self._by_container.get(record.container_id)
            if existing is not None:
                existing.refresh_from(record)
                continue
            self._by_container[record.container_id] = record
            self.ads.append(record)
            added.append(record)
        return added

    def has_container(self, container_id: str) -> bool:
        return container_id in self._by_container

    def transition(self, status: str) -> bool:
        """터미널 상태는 한 번만. 바뀌었으면 True."""
        if self.terminal:
            return False
        self.status = status
        if status in TERMINAL_STATUSES:
            self.end_time = _now_iso()
        return True

    def summary(self) -> dict:
        return {
            "worker_id": self.worker_id,
            "session_id": self.session_id,
            "url": self.target_url,
            "status": self.status,
            "device_mode": self.device_mode,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "ads_extracted": len(self.ads),
            "errors": self.errors,
            "polls": self.polls,
        }

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "worker_id": self.worker_id,
            "run_id": self.run_id,
            "target_url": self.target_url,
            "device_mode": self.device_mode,
            "budget": self.budget,
            "status": self.status,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "total_ads": len(self.ads),
            "errors": self.errors,
            "polls": self.polls,
            "idle_polls": self.idle_polls,
            "ads": [ad.to_dict() for ad in self.ads],
            "logs": list(self.logs),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkerRun":
        return cls(
            session_id=str(data["session_id"]),
            worker_id=int(data.get("worker_id") or 0),
            run_id=data.get("run_id") or "",
            target_url=data.get("target_url") or "",
            device_mode=data.get("device_mode") or "desktop",
            budget=data.get("budget") or "unlimited",
            status=data.get("status") or IDLE,
            start_time=data.get("start_time") or _now_iso(),
            end_time=data.get("end_time"),
            ads=[AdRecord.from_dict(a) for a in data.get("ads") or []],
            errors=int(data.get("errors") or 0),
            polls=int(data.get("polls") or 0),
            idle_polls=int(data.get("idle_polls") or 0),
            logs=data.get("logs") or [],
        )
