"""광고 레코드 / 인페이지 접근 결과 타입."""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

PROTECTED_ADVERTISER = "Protected Ad"
PROTECTED_HEADLINE = "Cross-origin content"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def make_ad_id(session_id: str, container_id: str) -> str:
    """같은 워커 런에서 같은 컨테이너는 항상 같은 id."""
    digest = hashlib.sha1(f"{session_id}|{container_id}".encode("utf-8")).hexdigest()
    return f"ad_{digest[:16]}"


# ── AccessResult: Ok(fields) | Restricted ──


@dataclass(frozen=True)
class AdFields:
    advertiser: str = ""
    headline: str = ""
    body: str = ""
    image: str = ""
    link: str = ""


@dataclass(frozen=True)
class AccessOk:
    fields: AdFields


@dataclass(frozen=True)
class AccessRestricted:
    reason: str


AccessResult = AccessOk | AccessRestricted


def parse_access_result(raw: dict | None) -> AccessResult:
    """인페이지 스크립트가 돌려준 `{"access": ...}` 값을 변환."""
    if not raw:
        return AccessRestricted(reason="no extraction result")
    if raw.get("access") == "ok":
        data = raw.get("fields") or {}
        return AccessOk(fields=AdFields(
            advertiser=_clean(data.get("advertiser")),
            headline=_clean(data.get("headline")),
            body=_clean(data.get("body")),
            image=_clean(data.get("image")),
            link=_clean(data.get("link")),
        ))
    return AccessRestricted(reason=str(raw.get("reason") or "restricted"))


def _clean(value) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


# ── AdRecord ──


@dataclass
class AdPosition:
    top: float = 0.0
    left: float = 0.0
    width: float = 0.0
    height: float = 0.0
    visible: bool = False

    @classmethod
    def from_dict(cls, data: dict | None) -> "AdPosition":
        data = data or {}
        return cls(
            top=float(data.get("top") or 0),
            left=float(data.get("left") or 0),
            width=float(data.get("width") or 0),
            height=float(data.get("height") or 0),
            visible=bool(data.get("visible", False)),
        )


@dataclass
class AdRecord:
    id: str
    container_id: str
    source_type: str
    network: str = "native"
    advertiser: str = ""
    headline: str = ""
    body: str = ""
    image: str = ""
    link: str = ""
    size: str = ""
    score: int = 0
    restricted: bool = False
    access_note: str = ""
    position: AdPosition = field(default_factory=AdPosition)
    detected_at: str = field(default_factory=_now_iso)
    last_seen_at: str = ""
    # 처음 검출한 워커 런. 이어받은 런에서도 바뀌지 않는다
    origin_session_id: str = ""

    @property
    def has_content(self) -> bool:
        return bool(self.advertiser or self.headline or self.body or self.link)

    def refresh_from(self, other: "AdRecord"):
        """재검출 시 위치/가시성/최종 관측 시각만 갱신."""
        self.position = other.position
        self.last_seen_at = other.detected_at
        if self.restricted and not other.restricted:
            # 나중에 접근 가능해진 경우 실제 필드로 교체
            self.advertiser = other.advertiser
            self.headline = other.headline
            self.body = other.body
            self.image = other.image
            self.link = other.link or self.link
            self.restricted = False
            self.access_note = ""

    def content_key(self, session_id: str) -> str:
        """통합 저장소의 안정 키. 내용을 못 읽은 경우 최초 검출 세션+컨테이너 기준."""
        if self.restricted or not (self.advertiser or self.headline):
            raw = f"session|{self.origin_session_id or session_id}|{self.container_id}"
        else:
            raw = f"content|{self.advertiser}|{self.headline}|{self.container_id}"
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AdRecord":
        return cls(
            id=str(data.get("id") or ""),
            container_id=str(data.get("container_id") or ""),
            source_type=str(data.get("source_type") or "unknown"),
            network=str(data.get("network") or "native"),
            advertiser=data.get("advertiser") or "",
            headline=data.get("headline") or "",
            body=data.get("body") or "",
            image=data.get("image") or "",
            link=data.get("link") or "",
            size=data.get("size") or "",
            score=int(data.get("score") or 0),
            restricted=bool(data.get("restricted", False)),
            access_note=data.get("access_note") or "",
            position=AdPosition.from_dict(data.get("position")),
            detected_at=data.get("detected_at") or _now_iso(),
            last_seen_at=data.get("last_seen_at") or "",
            origin_session_id=data.get("origin_session_id") or "",
        )
