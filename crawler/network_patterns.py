"""서드파티 광고 네트워크 마커 테이블.

사이트 고유 컨테이너 규칙을 쓰지 않는 네트워크 광고를 잡기 위한 데이터.
알고리즘이 아니라 데이터이므로 사이트/네트워크가 바뀌면 여기만 수정한다.
"""

from __future__ import annotations

from dataclasses import dataclass

# 사이트 고유(native) 광고 시그니처
NATIVE_CONTAINER_SELECTOR = '[id^="ForYou-"]'
NATIVE_ID_PREFIX = "ForYou-"
NATIVE_IFRAME_SELECTOR = "iframe.mspai-nova-native"

# iframe 문서 내부 필드 셀렉터
FIELD_SELECTORS = {
    "advertiser": ".ad-advertiser",
    "headline": ".ad-headline",
    "body": ".ad-body",
    "image": ".ad-image-container",
}

# iframe src 쿼리 파라미터 중 클릭 URL 후보 (우선순위 순)
CLICK_URL_PARAMS = ("click_url", "clickUrl", "click", "url")

# 컨테이너/상위 요소의 클릭 URL 속성
LINK_ATTRIBUTES = ("data-click-url", "data-link", "data-ad-link")


@dataclass(frozen=True)
class NetworkMarker:
    network: str
    kind: str  # "iframe" | "div"
    selector: str
    source_type: str
    weight: int


def _iframes(network: str, selectors: list[str], weight: int = 60) -> list[NetworkMarker]:
    return [NetworkMarker(network, "iframe", s, f"{network}-iframe", weight) for s in selectors]


def _divs(network: str, selectors: list[str], weight: int = 40) -> list[NetworkMarker]:
    return [NetworkMarker(network, "div", s, f"{network}-container", weight) for s in selectors]


NETWORK_MARKERS: list[NetworkMarker] = [
    # Google Ads / AdSense / DoubleClick
    *_iframes("google", [
        'iframe[src*="doubleclick.net"]',
        'iframe[src*="googlesyndication.com"]',
        'iframe[src*="googleadservices.com"]',
        'iframe[id^="google_ads_iframe"]',
        'iframe[name^="google_ads_iframe"]',
    ]),
    NetworkMarker("google", "div", "ins.adsbygoogle", "adsense", 55),
    *_divs("google", [
        'div[id^="google_ads_div"]',
        'div[class*="google-ads"]',
        "div[data-google-query-id]",
        'div[id*="div-gpt-ad"]',
    ]),
    # Amazon
    *_iframes("amazon", [
        'iframe[src*="amazon-adsystem.com"]',
        'iframe[src*="aax.amazon"]',
    ]),
    *_divs("amazon", [
        'div[id*="amzn-assoc-ad"]',
        'div[class*="amazon-ad"]',
    ]),
    # Facebook Audience Network
    *_iframes("facebook", [
        'iframe[src*="facebook.com/tr"]',
        'iframe[src*="facebook.com/plugins/ad"]',
    ]),
    *_divs("facebook", [
        "div[data-fbad]",
        'div[class*="fb-ad"]',
    ]),
    # Taboola / Outbrain
    *_divs("taboola", [
        'div[id^="taboola"]',
        'div[class*="taboola"]',
        "div[data-taboola]",
    ]),
    *_divs("outbrain", [
        'div[class*="outbrain"]',
        'div[data-widget-id*="outbrain"]',
        ".ob-widget",
        "div[data-ob]",
    ]),
    # Media.net
    *_iframes("medianet", ['iframe[src*="media.net"]']),
    *_divs("medianet", [
        'div[id*="medianet"]',
        'div[class*="medianet"]',
    ]),
    # 범용 애드서버
    *_iframes("generic", [
        'iframe[src*="serving-sys.com"]',
        'iframe[src*="adsrvr.org"]',
        'iframe[src*="adsafeprotected.com"]',
        'iframe[src*="moatads.com"]',
        'iframe[src*="adsystem"]',
        'iframe[src*="adserver"]',
        'iframe[src*="adzerk"]',
        'iframe[class*="ad-frame"]',
    ], weight=50),
    *_divs("generic", [
        'div[class*="sponsored-content"]',
        'div[class*="sponsored-post"]',
        "div[data-ad-slot]",
        "div[data-ad-unit]",
        'div[class*="advertisement"]',
        'div[class*="ad-container"]',
        'div[class*="ad-banner"]',
        "div[data-sponsored]",
        '[data-content-type="advertisement"]',
    ], weight=30),
]

# 휴리스틱 후보에서 감점할 키워드 (푸터/내비게이션/소셜 링크)
EXCLUDE_KEYWORDS = (
    "follow us",
    "connect with us",
    "social media",
    "footer",
    "navigation",
    "menu",
    "header",
    "about us",
    "contact us",
    "privacy policy",
    "terms",
    "copyright",
)

SPONSORED_WORDS = ("sponsored", "promoted", "advertisement")

# 본문에 들어 있으면 광고가 아닌 페이지 크롬으로 판단
PAGE_CHROME_PHRASES = (
    "Sign In",
    "About NewsBreak",
    "Terms of Use",
    "Privacy Policy",
    "See all locations",
    "emoji_like",
)


def markers_payload(markers: list[NetworkMarker] | None = None) -> list[dict]:
    """page.evaluate 인자로 넘길 직렬화 형태."""
    return [
        {
            "network": m.network,
            "kind": m.kind,
            "selector": m.selector,
            "sourceType": m.source_type,
            "weight": m.weight,
        }
        for m in (markers if markers is not None else NETWORK_MARKERS)
    ]
