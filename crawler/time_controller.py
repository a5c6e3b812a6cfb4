"""실행 예산 관리: duration / unlimited 모드.

오케스트레이터가 직접 시계를 들고 있지 않아도 되도록
시작 시각 / 경과 / 남은 시간 / 만료 여부를 제공한다.

    tc = TimeController("9h30m")
    tc.start()
    while not tc.expired():
        ...
"""

from __future__ import annotations

import re
import time

_TOKEN_RE = re.compile(r"(\d+)([smhd])")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_UNLIMITED_WORDS = {"unlimited", "infinite", "none", ""}


def parse_duration(value: str | int | float | None) -> float | None:
    """사람이 읽는 기간 표기를 초 단위로 변환. unlimited면 None.

    "30s", "5m", "2h", "9h30m", "1d" 및 숫자(초)를 허용한다.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"negative duration: {value!r}")
        return float(value) if value > 0 else None

    text = value.strip().lower()
    if text in _UNLIMITED_WORDS:
        return None
    if re.fullmatch(r"\d+(\.\d+)?", text):
        seconds = float(text)
        return seconds if seconds > 0 else None

    compact = text.replace(" ", "")
    tokens = _TOKEN_RE.findall(compact)
    if not tokens or "".join(n + u for n, u in tokens) != compact:
        raise ValueError(f"invalid duration: {value!r}")
    total = sum(int(n) * _UNIT_SECONDS[u] for n, u in tokens)
    return float(total) if total > 0 else None


def format_duration(seconds: float | None) -> str:
    """초 → "1h 2m 3s". None이면 "unlimited"."""
    if seconds is None:
        return "unlimited"
    seconds = max(0, int(seconds))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class TimeController:
    """duration 또는 unlimited 예산.

    `clock`은 테스트에서 가짜 시계를 주입하기 위한 훅이다.
    """

    def __init__(self, duration: str | int | float | None = None, clock=time.monotonic):
        self.budget_sec: float | None = parse_duration(duration)
        self._clock = clock
        self._started_at: float | None = None
        self._stopped = False

    @property
    def unlimited(self) -> bool:
        return self.budget_sec is None

    @property
    def mode(self) -> str:
        return "unlimited" if self.unlimited else "duration"

    @property
    def started(self) -> bool:
        return self._started_at is not None

    def start(self) -> "TimeController":
        self._started_at = self._clock()
        self._stopped = False
        return self

    def stop(self):
        """이후 expired()가 항상 True (협조적 종료 신호)."""
        self._stopped = True

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return max(0.0, self._clock() - self._started_at)

    def expired(self) -> bool:
        if self._stopped:
            return True
        if self.unlimited or self._started_at is None:
            return False
        return self.elapsed() >= self.budget_sec

    def remaining(self) -> float | None:
        if self.unlimited:
            return None
        if self._stopped:
            return 0.0
        return max(0.0, self.budget_sec - self.elapsed())

    def progress(self) -> float:
        """0.0 ~ 1.0 진행률. unlimited는 항상 0."""
        if self.unlimited or not self.budget_sec:
            return 0.0
        return min(1.0, self.elapsed() / self.budget_sec)

    def label(self) -> str:
        return format_duration(self.budget_sec)

    def status(self) -> dict:
        remaining = self.remaining()
        return {
            "mode": self.mode,
            "budget": self.label(),
            "elapsed": format_duration(self.elapsed()),
            "remaining": format_duration(remaining) if remaining is not None else None,
            "progress": round(self.progress() * 100, 1),
            "expired": self.expired(),
        }


def create_time_controller(duration=None) -> TimeController:
    """'unlimited' / None / 0 → unlimited, 그 외는 duration."""
    if isinstance(duration, TimeController):
        return duration
    return TimeController(duration)
