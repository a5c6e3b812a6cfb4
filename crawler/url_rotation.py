"""워커별 타겟 URL 배정: 도시 목록 로테이션."""

from __future__ import annotations

NEWSBREAK_LOCATIONS: list[str] = [
    # 대도시
    "https://www.newsbreak.com/new-york-ny",
    "https://www.newsbreak.com/los-angeles-ca",
    "https://www.newsbreak.com/chicago-il",
    "https://www.newsbreak.com/houston-tx",
    "https://www.newsbreak.com/philadelphia-pa",
    "https://www.newsbreak.com/phoenix-az",
    "https://www.newsbreak.com/san-antonio-tx",
    "https://www.newsbreak.com/san-diego-ca",
    "https://www.newsbreak.com/dallas-tx",
    "https://www.newsbreak.com/san-jose-ca",
    # 중소도시
    "https://www.newsbreak.com/austin-tx",
    "https://www.newsbreak.com/jacksonville-fl",
    "https://www.newsbreak.com/san-francisco-ca",
    "https://www.newsbreak.com/columbus-oh",
    "https://www.newsbreak.com/indianapolis-in",
    "https://www.newsbreak.com/fort-worth-tx",
    "https://www.newsbreak.com/charlotte-nc",
    "https://www.newsbreak.com/seattle-wa",
    "https://www.newsbreak.com/denver-co",
    "https://www.newsbreak.com/washington-dc",
    # 추가
    "https://www.newsbreak.com/boston-ma",
    "https://www.newsbreak.com/el-paso-tx",
    "https://www.newsbreak.com/detroit-mi",
    "https://www.newsbreak.com/nashville-tn",
    "https://www.newsbreak.com/memphis-tn",
    "https://www.newsbreak.com/portland-or",
    "https://www.newsbreak.com/oklahoma-city-ok",
    "https://www.newsbreak.com/las-vegas-nv",
    "https://www.newsbreak.com/louisville-ky",
    "https://www.newsbreak.com/baltimore-md",
    "https://www.newsbreak.com/milwaukee-wi",
    "https://www.newsbreak.com/albuquerque-nm",
    "https://www.newsbreak.com/tucson-az",
    "https://www.newsbreak.com/fresno-ca",
    "https://www.newsbreak.com/sacramento-ca",
    "https://www.newsbreak.com/mesa-az",
    "https://www.newsbreak.com/kansas-city-mo",
    "https://www.newsbreak.com/atlanta-ga",
    "https://www.newsbreak.com/miami-fl",
    "https://www.newsbreak.com/tampa-fl",
]

SAME_URL = "same_url"
ROTATE_BY_CITY_LIST = "rotate_by_city_list"
POLICIES = (SAME_URL, ROTATE_BY_CITY_LIST)


def assign_url(
    policy: str,
    worker_index: int,
    target_url: str | None = None,
    url_list: list[str] | None = None,
) -> str:
    """워커 인덱스에 배정할 URL.

    rotate 정책은 `worker_index % len(list)`. 워커 수가 목록보다 많으면 반복된다.
    """
    if policy == SAME_URL:
        if not target_url:
            raise ValueError("same_url policy requires target_url")
        return target_url
    if policy == ROTATE_BY_CITY_LIST:
        urls = url_list or NEWSBREAK_LOCATIONS
        return urls[worker_index % len(urls)]
    raise ValueError(f"unknown url policy: {policy}")

