"""크롤러 전역 설정."""

from pydantic_settings import BaseSettings


class CrawlerSettings(BaseSettings):
    # 폴링
    poll_interval_sec: float = 5.0
    evaluate_timeout_sec: float = 20.0

    # 타임아웃
    navigation_timeout_ms: int = 80_000
    fallback_navigation_timeout_ms: int = 60_000
    reload_timeout_ms: int = 30_000

    # 브라우저 실행 / 재시도
    launch_attempts: int = 3
    retry_delay_sec: float = 2.0
    headless: bool = True
    slow_mo_ms: int = 0
    device_mode: str = "desktop"

    # 장애 허용
    max_consecutive_errors: int = 15
    reconnect_max_attempts: int = 10
    reconnect_base_wait_sec: float = 3.0
    reconnect_step_sec: float = 2.0
    reconnect_max_wait_sec: float = 15.0

    # 워커 풀
    max_workers: int = 10
    default_workers: int = 5
    force_stop_timeout_sec: float = 15.0
    stats_interval_sec: float = 30.0
    sync_on_complete: bool = True

    # 저장소
    data_dir: str = "data"
    sessions_dir: str = "data/sessions"
    learned_rules_path: str = "data/learned_selectors.json"
    log_retention: int = 50
    index_retention: int = 50
    save_every_polls: int = 5
    persist_retry_delay_sec: float = 0.5

    # 스크롤 행동
    scroll_min_px: int = 400
    scroll_max_px: int = 1200

    # 프로필 매니저 (AdsPower 로컬 API)
    profile_manager_enabled: bool = False
    profile_manager_url: str = "http://local.adspower.net:50325"
    profile_manager_timeout_sec: float = 30.0
    profile_id: str = ""

    model_config = {"env_prefix": "CRAWLER_"}


crawler_settings = CrawlerSettings()
