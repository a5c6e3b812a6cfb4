"""워커별 URL 배정 정책 테스트."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from crawler.url_rotation import (
    NEWSBREAK_LOCATIONS,
    ROTATE_BY_CITY_LIST,
    SAME_URL,
    assign_url,
)

CITIES = [
    "https://example.com/a",
    "https://example.com/b",
    "https://example.com/c",
]


def test_rotation_wraps_around_list():
    urls = [assign_url(ROTATE_BY_CITY_LIST, i, url_list=CITIES) for i in range(6)]
    assert urls == CITIES + CITIES
    # worker 5 with 3 cities gets the same URL as worker 2
    assert assign_url(ROTATE_BY_CITY_LIST, 5, url_list=CITIES) == CITIES[2]


def test_rotation_defaults_to_builtin_city_list():
    assert assign_url(ROTATE_BY_CITY_LIST, 0) == NEWSBREAK_LOCATIONS[0]
    assert assign_url(ROTATE_BY_CITY_LIST, len(NEWSBREAK_LOCATIONS)) == NEWSBREAK_LOCATIONS[0]


def test_same_url_policy():
    target = "https://example.com/only"
    assert {assign_url(SAME_URL, i, target_url=target) for i in range(10)} == {target}


def test_same_url_requires_target():
    with pytest.raises(ValueError):
        assign_url(SAME_URL, 0)


def test_unknown_policy_rejected():
    with pytest.raises(ValueError):
        assign_url("random_walk", 0)

