"""브라우저 프로필 매니저(AdsPower 로컬 API) 클라이언트.

프로필을 띄우고 CDP 접속 엔드포인트를 받아오는 용도로만 쓴다.
매니저가 없으면 워커는 로컬 Chromium 을 직접 띄운다.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from loguru import logger

from crawler.config import crawler_settings
from crawler.errors import ProfileManagerError


@dataclass(frozen=True)
class ProfileRef:
    user_id: str
    name: str = ""
    group_name: str = ""
    country: str = ""
    remark: str = ""

    @classmethod
    def from_api(cls, data: dict) -> "ProfileRef":
        return cls(
            user_id=str(data.get("user_id") or ""),
            name=data.get("name") or "",
            group_name=data.get("group_name") or "",
            country=(data.get("country") or data.get("ip_country") or "").lower(),
            remark=data.get("remark") or "",
        )


class ProfileManagerClient:
    """`GET /api/v1/...` 래퍼. code != 0 응답은 ProfileManagerError."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or crawler_settings.profile_manager_url).rstrip("/")
        self.timeout = timeout or crawler_settings.profile_manager_timeout_sec
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def _get(self, path: str, params: dict | None = None) -> dict:
        try:
            async with self._client() as client:
                resp = await client.get(path, params=params)
                resp.raise_for_status()
                payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProfileManagerError(f"{path} 요청 실패: {e}") from e
        if payload.get("code") != 0:
            raise ProfileManagerError(f"{path} 오류: {payload.get('msg') or payload}")
        return payload.get("data") or {}

    async def check_status(self) -> bool:
        """로컬 API 가 살아 있는지."""
        try:
            async with self._client() as client:
                resp = await client.get("/status")
            return resp.status_code == 200 and resp.json().get("code") == 0
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("[profile-manager] status 확인 실패: {}", e)
            return False

    async def list_profiles(self, group_id: str | None = None) -> list[ProfileRef]:
        params = {"page": 1, "page_size": 100}
        if group_id:
            params["group_id"] = group_id
        data = await self._get("/api/v1/user/list", params)
        profiles = [ProfileRef.from_api(p) for p in data.get("list") or []]
        logger.info("[profile-manager] 프로필 {}개", len(profiles))
        return profiles

    async def start_profile(
        self,
        user_id: str,
        launch_args: list[str] | None = None,
        headless: bool = False,
    ) -> str:
        """프로필 브라우저 실행 → CDP websocket 엔드포인트."""
        params = {
            "user_id": user_id,
            "open_tabs": 0,
            "ip_tab": 0,
            "new_first_tab": 1,
            "headless": 1 if headless else 0,
        }
        if launch_args:
            params["launch_args"] = ",".join(launch_args)
        data = await self._get("/api/v1/browser/start", params)
        ws = data.get("ws") or {}
        endpoint = ws.get("puppeteer") or ws.get("selenium") or data.get("webdriver")
        if not endpoint:
            raise ProfileManagerError(f"프로필 {user_id} 실행 응답에 접속 엔드포인트 없음")
        logger.info("[profile-manager] 프로필 {} 실행: {}", user_id, endpoint)
        return endpoint

    async def stop_profile(self, user_id: str):
        try:
            await self._get("/api/v1/browser/stop", {"user_id": user_id})
            logger.info("[profile-manager] 프로필 {} 종료", user_id)
        except ProfileManagerError as e:
            logger.warning("[profile-manager] 프로필 {} 종료 실패: {}", user_id, e)

    async def get_active_profile(self, user_id: str) -> dict:
        """{"active": bool, "data": ...}. 조회 실패는 비활성으로 본다."""
        try:
            data = await self._get("/api/v1/browser/active", {"user_id": user_id})
            return {"active": data.get("status", "Active") == "Active", "data": data}
        except ProfileManagerError as e:
            logger.debug("[profile-manager] 프로필 {} 상태 조회 실패: {}", user_id, e)
            return {"active": False, "data": None}
