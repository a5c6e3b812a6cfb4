"""브라우저 세션 획득: 로컬 Chromium 또는 프로필 매니저(CDP).

워커는 BrowserSource.acquire() 로 BrowserSession 을 받고,
navigate / evaluate / list_pages / release 만 사용한다.
"""

from __future__ import annotations

import asyncio

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright_stealth import Stealth

from crawler.config import crawler_settings
from crawler.device_config import DeviceConfig
from crawler.errors import BrowserLaunchError, NavigationError
from crawler.profile_manager import ProfileManagerClient

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-web-security",
    "--disable-site-isolation-trials",
    "--disable-dev-shm-usage",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-notifications",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-backgrounding-occluded-windows",
]

SCROLL_INFO_JS = """
() => {
    const current = window.pageYOffset || document.documentElement.scrollTop;
    const max = document.documentElement.scrollHeight - window.innerHeight;
    return {current, max, atBottom: current >= max - 100};
}
"""


async def _apply_stealth(context: BrowserContext):
    stealth = Stealth(
        navigator_languages_override=("en-US", "en"),
        navigator_user_agent=False,
        chrome_runtime=True,
    )
    for script in list(stealth.enabled_scripts):
        await context.add_init_script(script)


class BrowserSession:
    """워커 한 개가 소유하는 원격 제어 브라우저 세션."""

    def __init__(
        self,
        playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        label: str,
        owns_context: bool = True,
        on_release=None,
    ):
        self._playwright = playwright
        self.browser = browser
        self.context = context
        self.page = page
        self.label = label
        self._owns_context = owns_context
        self._on_release = on_release
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def is_connected(self) -> bool:
        return not self._released and self.browser.is_connected() and not self.page.is_closed()

    async def navigate(self, url: str, wait_until: str = "networkidle", timeout_ms: int | None = None):
        """networkidle 실패 시 domcontentloaded 로 한 번 더."""
        timeout_ms = timeout_ms or crawler_settings.navigation_timeout_ms
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout_ms)
            return
        except Exception as e:
            if wait_until == "domcontentloaded":
                raise NavigationError(f"{url} 이동 실패: {e}") from e
            logger.warning("[{}] {} 대기 실패, domcontentloaded 로 재시도: {}", self.label, wait_until, e)
        try:
            await self.page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=crawler_settings.fallback_navigation_timeout_ms,
            )
        except Exception as e:
            raise NavigationError(f"{url} 이동 실패: {e}") from e

    async def evaluate(self, script: str, arg=None):
        return await self.page.evaluate(script, arg)

    async def list_pages(self) -> list[Page]:
        return list(self.context.pages)

    async def scroll_info(self) -> dict:
        return await self.page.evaluate(SCROLL_INFO_JS)

    async def scroll_by(self, distance: int):
        await self.page.evaluate("(d) => window.scrollBy(0, d)", distance)

    async def reload(self, timeout_ms: int | None = None):
        timeout_ms = timeout_ms or crawler_settings.reload_timeout_ms
        try:
            await self.page.reload(wait_until="networkidle", timeout=timeout_ms)
        except Exception as e:
            logger.warning("[{}] 새로고침 실패, domcontentloaded 로 재시도: {}", self.label, e)
            await self.page.reload(wait_until="domcontentloaded", timeout=timeout_ms)

    async def release(self):
        """여러 번 호출해도 안전. 정리 중 오류는 로그만 남긴다."""
        if self._released:
            return
        self._released = True
        try:
            if self._owns_context:
                await self.context.close()
            await self.browser.close()
        except Exception as e:
            logger.debug("[{}] 브라우저 종료 중 오류: {}", self.label, e)
        try:
            await self._playwright.stop()
        except Exception as e:
            logger.debug("[{}] playwright 종료 중 오류: {}", self.label, e)
        if self._on_release is not None:
            await self._on_release()
        logger.info("[{}] 브라우저 세션 해제", self.label)


class LocalBrowserSource:
    """로컬 Chromium 을 직접 띄운다."""

    kind = "local"

    def __init__(self, headless: bool | None = None, slow_mo_ms: int | None = None):
        self.headless = crawler_settings.headless if headless is None else headless
        self.slow_mo_ms = crawler_settings.slow_mo_ms if slow_mo_ms is None else slow_mo_ms

    async def acquire(self, device: DeviceConfig, label: str, worker_index: int = 0) -> BrowserSession:
        pw = await async_playwright().start()
        try:
            browser = await pw.chromium.launch(
                headless=self.headless,
                slow_mo=self.slow_mo_ms or None,
                args=LAUNCH_ARGS,
            )
            context = await browser.new_context(
                **device.context_options(),
                locale="en-US",
                ignore_https_errors=True,
            )
            context.set_default_timeout(crawler_settings.navigation_timeout_ms)
            await _apply_stealth(context)
            page = await context.new_page()
        except BaseException as e:
            await pw.stop()
            if isinstance(e, Exception):
                raise BrowserLaunchError(f"로컬 브라우저 실행 실패: {e}") from e
            raise
        logger.info("[{}] 로컬 브라우저 시작 (headless={}, device={})", label, self.headless, device.device_mode)
        return BrowserSession(pw, browser, context, page, label)


class ProfileBrowserSource:
    """프로필 매니저가 띄운 브라우저에 CDP 로 붙는다.

    워커 인덱스마다 프로필을 하나씩 배정한다 (`index % len(profile_ids)`).
    """

    kind = "profile"

    def __init__(self, client: ProfileManagerClient, profile_ids: list[str], headless: bool = False):
        if not profile_ids:
            raise ValueError("profile_ids must not be empty")
        self.client = client
        self.profile_ids = list(profile_ids)
        self.headless = headless

    async def acquire(self, device: DeviceConfig, label: str, worker_index: int = 0) -> BrowserSession:
        user_id = self.profile_ids[worker_index % len(self.profile_ids)]
        endpoint = await self.client.start_profile(user_id, launch_args=LAUNCH_ARGS[:2], headless=self.headless)
        pw = await async_playwright().start()
        try:
            browser = await pw.chromium.connect_over_cdp(endpoint)
            if browser.contexts:
                context = browser.contexts[0]
                owns_context = False
            else:
                context = await browser.new_context(**device.context_options())
                owns_context = True
            page = await context.new_page()
        except Exception as e:
            await pw.stop()
            await self.client.stop_profile(user_id)
            raise BrowserLaunchError(f"프로필 {user_id} CDP 연결 실패: {e}") from e

        async def _stop_profile():
            await self.client.stop_profile(user_id)

        logger.info("[{}] 프로필 {} 연결 ({})", label, user_id, endpoint)
        return BrowserSession(pw, browser, context, page, label, owns_context=owns_context, on_release=_stop_profile)


def default_browser_source(headless: bool | None = None):
    """설정에 따라 프로필 매니저 또는 로컬 브라우저."""
    if crawler_settings.profile_manager_enabled and crawler_settings.profile_id:
        ids = [p.strip() for p in crawler_settings.profile_id.split(",") if p.strip()]
        return ProfileBrowserSource(ProfileManagerClient(), ids, headless=bool(headless))
    return LocalBrowserSource(headless=headless)


async def acquire_with_retry(source, device: DeviceConfig, label: str, worker_index: int = 0,
                             attempts: int | None = None, delay_sec: float | None = None) -> BrowserSession:
    """세션 획득 재시도 (attempt 마다 지연 증가)."""
    attempts = attempts or crawler_settings.launch_attempts
    delay_sec = crawler_settings.retry_delay_sec if delay_sec is None else delay_sec
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await source.acquire(device, label, worker_index)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            logger.warning("[{}] 브라우저 획득 실패 ({}/{}): {}", label, attempt, attempts, e)
            if attempt < attempts:
                await asyncio.sleep(delay_sec * attempt)
    raise BrowserLaunchError(f"{attempts}회 시도 후 브라우저 획득 실패: {last_error}") from last_error
