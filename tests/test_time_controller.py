"""실행 예산 (duration / unlimited) 단위 테스트."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from crawler.time_controller import (
    TimeController,
    create_time_controller,
    format_duration,
    parse_duration,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.mark.parametrize(
    "value, expected",
    [
        ("30s", 30.0),
        ("5m", 300.0),
        ("2h", 7200.0),
        ("9h30m", 34200.0),
        ("1h 15m", 4500.0),
        ("1d", 86400.0),
        ("90", 90.0),
        (45, 45.0),
        (2.5, 2.5),
    ],
)
def test_parse_duration_values(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", [None, "unlimited", "Infinite", "none", "", 0, "0"])
def test_parse_duration_unlimited(value):
    assert parse_duration(value) is None


@pytest.mark.parametrize("value", ["abc", "10x", "5m banana", "-5", -3, True])
def test_parse_duration_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_duration(value)


def test_format_duration():
    assert format_duration(None) == "unlimited"
    assert format_duration(7) == "7s"
    assert format_duration(125) == "2m 5s"
    assert format_duration(3723) == "1h 2m 3s"


def test_duration_budget_expires():
    clock = FakeClock()
    tc = TimeController("2m", clock=clock).start()

    assert not tc.expired()
    assert tc.remaining() == 120.0

    clock.advance(90)
    assert tc.remaining() == 30.0
    assert tc.progress() == pytest.approx(0.75)

    clock.advance(30)
    assert tc.expired()
    assert tc.remaining() == 0.0
    assert tc.status()["expired"] is True


def test_unlimited_never_expires():
    clock = FakeClock()
    tc = TimeController("unlimited", clock=clock).start()
    clock.advance(10 * 86400)

    assert tc.unlimited
    assert tc.mode == "unlimited"
    assert not tc.expired()
    assert tc.remaining() is None
    assert tc.progress() == 0.0
    assert tc.status()["remaining"] is None


def test_not_started_is_not_expired():
    tc = TimeController("1s", clock=FakeClock())
    assert not tc.started
    assert tc.elapsed() == 0.0
    assert not tc.expired()


def test_stop_forces_expiry_even_when_unlimited():
    tc = TimeController(None, clock=FakeClock()).start()
    tc.stop()
    assert tc.expired()


def test_create_time_controller_passes_instance_through():
    tc = TimeController("5m")
    assert create_time_controller(tc) is tc
    assert create_time_controller("unlimited").unlimited
    assert create_time_controller("10m").budget_sec == 600.0
