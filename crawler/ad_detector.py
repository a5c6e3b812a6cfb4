"""광고 검출 엔진: 로드된 페이지에서 현재 시점의 광고 레코드를 뽑는다.

단계:
  1. native: `[id^="ForYou-"]` 컨테이너 + `iframe.mspai-nova-native` (구조 시그니처, 점수 100)
  2. network: 서드파티 애드서버 마커 (iframe src / id 접두사 / 마커 속성)
  3. learned: 주입된 LearnedRules 의 후보 셀렉터 (휴리스틱 점수 ≥ 15 만)

iframe 접근 결과는 인페이지 스크립트가 `{"access": "ok"|"restricted"}` 로 명시 반환하고,
restricted 는 "Protected Ad" 플레이스홀더 레코드가 된다. 컨테이너 하나의 실패가
배치 전체를 멈추지 않는다.
"""

from __future__ import annotations

import asyncio
import copy

from loguru import logger

from crawler.ad_record import (
    PROTECTED_ADVERTISER,
    PROTECTED_HEADLINE,
    AccessOk,
    AccessRestricted,
    AdPosition,
    AdRecord,
    make_ad_id,
    parse_access_result,
)
from crawler.config import crawler_settings
from crawler.learned_rules import LearnedRules
from crawler.network_patterns import (
    CLICK_URL_PARAMS,
    EXCLUDE_KEYWORDS,
    FIELD_SELECTORS,
    LINK_ATTRIBUTES,
    NATIVE_CONTAINER_SELECTOR,
    NATIVE_ID_PREFIX,
    NATIVE_IFRAME_SELECTOR,
    PAGE_CHROME_PHRASES,
    SPONSORED_WORDS,
    NetworkMarker,
    markers_payload,
)

NATIVE_SCORE = 100
NETWORK_SCORE_CAP = 99
CANDIDATE_MIN_SCORE = 15
CANDIDATE_LIMIT = 20
EXCLUDE_PENALTY = 25

MAX_BODY_LEN = 1000
MAX_HEADLINE_LEN = 300
MAX_ADVERTISER_LEN = 150
PAGE_CHROME_BODY_LEN = 800

SOURCE_NATIVE = "native-container"
SOURCE_LEARNED = "learned-candidate"


# ── 인페이지 스크립트 ──

_JS_HELPERS = """
    const vh = window.innerHeight;
    const geom = (el) => {
        const r = el.getBoundingClientRect();
        return {
            top: r.top + window.scrollY,
            left: r.left + window.scrollX,
            width: r.width,
            height: r.height,
            visible: r.width > 0 && r.height > 0 && r.top < vh && r.bottom > 0,
        };
    };
    const meta = (el) => ({
        id: el.id || '',
        classes: Array.from(el.classList || []),
        attributes: Array.from(el.attributes || []).map(a => a.name).filter(n => n.startsWith('data-')),
    });
    const clickFromSrc = (src) => {
        if (!src || src.indexOf('?') === -1) return '';
        const params = new URLSearchParams(src.split('?')[1]);
        for (const key of opts.clickParams) {
            const v = params.get(key);
            if (v) {
                try { return decodeURIComponent(v); } catch (e) { return v; }
            }
        }
        return '';
    };
    const clickFromAttrs = (el) => {
        let node = el;
        while (node && node !== document.body) {
            for (const attr of opts.linkAttributes) {
                const v = node.getAttribute ? node.getAttribute(attr) : null;
                if (v) return v;
            }
            node = node.parentElement;
        }
        return '';
    };
    const text = (el) => (el && el.textContent ? el.textContent.trim() : '');
"""

NATIVE_SCAN_JS = """
(opts) => {
""" + _JS_HELPERS + """
    const readFrame = (iframe) => {
        let doc = null;
        try {
            doc = iframe.contentDocument || (iframe.contentWindow && iframe.contentWindow.document);
        } catch (e) {
            return {access: 'restricted', reason: (e && e.name) || 'SecurityError'};
        }
        if (!doc || !doc.body) {
            return {access: 'restricted', reason: 'document not accessible'};
        }
        try {
            const f = opts.fields;
            const fields = {
                advertiser: text(doc.querySelector(f.advertiser)),
                headline: text(doc.querySelector(f.headline)),
                body: text(doc.querySelector(f.body)),
                image: '',
                link: '',
            };
            const imageBox = doc.querySelector(f.image);
            if (imageBox) {
                const img = imageBox.querySelector('img');
                if (img && img.src) {
                    fields.image = img.src;
                } else {
                    const view = doc.defaultView || window;
                    const bg = view.getComputedStyle(imageBox).backgroundImage;
                    if (bg && bg !== 'none') {
                        const m = bg.match(/url\\(['"]?(.*?)['"]?\\)/);
                        if (m) fields.image = m[1];
                    }
                }
            }
            const a = doc.querySelector('a[href]');
            if (a && a.href) fields.link = a.href;
            return {access: 'ok', fields};
        } catch (e) {
            return {access: 'restricted', reason: (e && e.name) || 'SecurityError'};
        }
    };

    const out = [];
    document.querySelectorAll(opts.containerSelector).forEach((container) => {
        const iframe = container.querySelector(opts.iframeSelector);
        if (!iframe) return;
        const g = geom(container);
        const w = iframe.width || Math.round(g.width);
        const h = iframe.height || Math.round(g.height);
        out.push({
            containerId: container.id,
            size: `${w}x${h}`,
            iframeSrc: iframe.src || '',
            position: g,
            access: readFrame(iframe),
            fallbackLink: clickFromSrc(iframe.src) || clickFromAttrs(container),
            meta: meta(container),
        });
    });
    return out;
}
"""

NETWORK_SCAN_JS = """
(opts) => {
""" + _JS_HELPERS + """
    const seen = new Set();
    const out = [];
    for (const marker of opts.markers) {
        let nodes = [];
        try {
            nodes = document.querySelectorAll(marker.selector);
        } catch (e) {
            continue;
        }
        nodes.forEach((el) => {
            if (seen.has(el)) return;
            seen.add(el);
            if (el.closest(opts.nativeSelector)) return;
            const g = geom(el);
            if (g.width === 0 || g.height === 0) return;
            const style = window.getComputedStyle(el);
            if (style.display === 'none' || style.visibility === 'hidden') return;
            const tag = el.tagName.toLowerCase();
            const inner = tag === 'iframe' ? el : el.querySelector('iframe');
            const src = inner ? (inner.src || '') : '';
            const anchor = el.querySelector ? el.querySelector('a[href]') : null;
            const label = (el.innerText || '').slice(0, 100);
            const heading = el.querySelector ? el.querySelector('h1, h2, h3, h4, [class*="title"], [class*="headline"]') : null;
            const img = el.querySelector ? el.querySelector('img') : null;
            out.push({
                network: marker.network,
                sourceType: marker.sourceType,
                kind: marker.kind,
                weight: marker.weight,
                tag,
                containerId: el.id || `${marker.network}-${tag}-${Math.round(g.top)}-${Math.round(g.left)}`,
                size: `${Math.round(g.width)}x${Math.round(g.height)}`,
                position: g,
                src,
                link: (anchor && anchor.href) || clickFromSrc(src) || clickFromAttrs(el),
                label: tag === 'iframe' ? '' : label,
                headline: tag === 'iframe' ? '' : text(heading).slice(0, 300),
                image: img && img.src ? img.src : '',
                meta: meta(el),
            });
        });
    }
    return out;
}
"""

CANDIDATE_SCAN_JS = """
(opts) => {
""" + _JS_HELPERS + """
    const seen = new Set();
    const out = [];
    const adClass = /(^|[\\s_-])(ad|ads|advert)([\\s_-]|$)|sponsor|promot/i;
    for (const selector of opts.selectors) {
        if (out.length >= opts.limit) break;
        let nodes = [];
        try {
            nodes = document.querySelectorAll(selector);
        } catch (e) {
            continue;
        }
        for (const el of nodes) {
            if (out.length >= opts.limit) break;
            if (seen.has(el)) continue;
            seen.add(el);
            if (el.closest(opts.nativeSelector)) continue;
            const g = geom(el);
            if (g.width === 0 || g.height === 0) continue;
            const heading = el.querySelector('h1, h2, h3, h4, [class*="title"], [class*="headline"]');
            const anchor = el.querySelector('a[href]') || el.closest('a[href]');
            const img = el.querySelector('img');
            const cls = typeof el.className === 'string' ? el.className : '';
            out.push({
                selector,
                containerId: el.id || `learned-${Math.round(g.top)}-${Math.round(g.left)}`,
                size: `${Math.round(g.width)}x${Math.round(g.height)}`,
                position: g,
                hasIframe: !!el.querySelector('iframe'),
                hasLink: !!anchor,
                hasImage: !!img,
                adClass: adClass.test(cls + ' ' + (el.id || '')),
                text: (el.innerText || '').slice(0, 300),
                idAndClass: `${el.id || ''} ${cls}`,
                headline: text(heading).slice(0, 300),
                link: anchor ? anchor.href : clickFromAttrs(el),
                image: img && img.src ? img.src : '',
            });
        }
    }
    return out;
}
"""


# ── 점수 / 검증 ──


def score_network_match(raw: dict) -> int:
    """마커 가중치 + 양성 신호. 구조 시그니처(100)보다 항상 낮다."""
    score = int(raw.get("weight") or 0)
    position = raw.get("position") or {}
    if position.get("visible"):
        score += 10
    if raw.get("link"):
        score += 10
    label = (raw.get("label") or "").lower()
    if any(word in label for word in SPONSORED_WORDS):
        score += 10
    return min(score, NETWORK_SCORE_CAP)


def score_candidate(raw: dict) -> int:
    """학습 후보의 휴리스틱 점수 = 양성 신호 합 - 제외 키워드 감점."""
    score = 0
    if raw.get("hasIframe"):
        score += 20
    body_text = (raw.get("text") or "").lower()
    if any(word in body_text for word in SPONSORED_WORDS):
        score += 15
    if raw.get("adClass"):
        score += 10
    if raw.get("hasLink"):
        score += 5
    if raw.get("hasImage"):
        score += 5
    if (raw.get("position") or {}).get("visible"):
        score += 5
    haystack = f"{body_text} {(raw.get('idAndClass') or '').lower()}"
    hits = sum(1 for keyword in EXCLUDE_KEYWORDS if keyword in haystack)
    return score - hits * EXCLUDE_PENALTY


def is_valid_ad(record: AdRecord) -> bool:
    """페이지 덤프 / 내비게이션 영역을 광고로 오인한 레코드 제거."""
    if record.restricted:
        return True
    if not record.has_content:
        return False
    if len(record.body) > MAX_BODY_LEN:
        return False
    if len(record.headline) > MAX_HEADLINE_LEN:
        return False
    if len(record.advertiser) > MAX_ADVERTISER_LEN:
        return False
    if record.body:
        if len(record.body) > PAGE_CHROME_BODY_LEN:
            return False
        if any(phrase in record.body for phrase in PAGE_CHROME_PHRASES):
            return False
    return True


def _sorted_by_score(records: list[AdRecord]) -> list[AdRecord]:
    return sorted(records, key=lambda r: -r.score)


# ── 엔진 ──


class AdDetectionEngine:
    """페이지 하나에 대한 광고 검출.

    rules 는 호출자가 주입하고 저장 여부도 호출자가 결정한다 (LearnedRuleStore).
    learn=True 이면 확정 광고의 class/id/속성 빈도를 rules 에 누적한다.
    """

    def __init__(
        self,
        rules: LearnedRules | None = None,
        markers: list[NetworkMarker] | None = None,
        learn: bool = False,
        evaluate_timeout_sec: float | None = None,
    ):
        self.rules = rules if rules is not None else LearnedRules()
        self.learn = learn
        self.evaluate_timeout_sec = evaluate_timeout_sec or crawler_settings.evaluate_timeout_sec
        self._markers_payload = markers_payload(markers)

    def clone(self) -> "AdDetectionEngine":
        """워커별 독립 인스턴스 (규칙 사본 포함)."""
        engine = AdDetectionEngine(
            rules=copy.deepcopy(self.rules),
            learn=self.learn,
            evaluate_timeout_sec=self.evaluate_timeout_sec,
        )
        engine._markers_payload = self._markers_payload
        return engine

    def _base_opts(self) -> dict:
        return {
            "clickParams": list(CLICK_URL_PARAMS),
            "linkAttributes": list(LINK_ATTRIBUTES),
            "nativeSelector": NATIVE_CONTAINER_SELECTOR,
        }

    async def _evaluate(self, page, script: str, opts: dict):
        return await asyncio.wait_for(page.evaluate(script, opts), timeout=self.evaluate_timeout_sec)

    async def detect(self, page, session_id: str = "") -> list[AdRecord]:
        """native → network → learned 순서, 그룹 내 점수 내림차순."""
        native_raw = await self._evaluate(page, NATIVE_SCAN_JS, {
            **self._base_opts(),
            "containerSelector": NATIVE_CONTAINER_SELECTOR,
            "iframeSelector": NATIVE_IFRAME_SELECTOR,
            "fields": dict(FIELD_SELECTORS),
        })
        native = self._build_native(native_raw or [], session_id)

        network = await self._detect_network(page, session_id)
        candidates = await self._detect_candidates(page, session_id)

        results: list[AdRecord] = []
        taken: set[str] = set()
        for group in (native, network, candidates):
            for record in _sorted_by_score(group):
                if record.container_id in taken:
                    continue
                taken.add(record.container_id)
                results.append(record)

        if self.learn:
            self._observe(native_raw or [], results)
        return results

    # ── 단계별 ──

    def _build_native(self, raw_items: list[dict], session_id: str) -> list[AdRecord]:
        records = []
        for raw in raw_items:
            container_id = raw.get("containerId") or ""
            if not container_id:
                continue
            record = AdRecord(
                id=make_ad_id(session_id, container_id),
                origin_session_id=session_id,
                container_id=container_id,
                source_type=SOURCE_NATIVE,
                network="native",
                size=raw.get("size") or "",
                score=NATIVE_SCORE,
                position=AdPosition.from_dict(raw.get("position")),
            )
            access = parse_access_result(raw.get("access"))
            self._apply_access(record, access, raw.get("fallbackLink") or "")
            if is_valid_ad(record):
                records.append(record)
        return records

    @staticmethod
    def _apply_access(record: AdRecord, access, fallback_link: str):
        if isinstance(access, AccessOk):
            fields = access.fields
            record.advertiser = fields.advertiser
            record.headline = fields.headline
            record.body = fields.body
            record.image = fields.image
            record.link = fields.link or fallback_link
        elif isinstance(access, AccessRestricted):
            record.advertiser = PROTECTED_ADVERTISER
            record.headline = PROTECTED_HEADLINE
            record.link = fallback_link
            record.restricted = True
            record.access_note = f"cross-origin: {access.reason}"

    async def _detect_network(self, page, session_id: str) -> list[AdRecord]:
        try:
            raw_items = await self._evaluate(page, NETWORK_SCAN_JS, {
                **self._base_opts(),
                "markers": self._markers_payload,
            })
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("[detector] 네트워크 광고 스캔 실패, 건너뜀: {}", e)
            return []

        records = []
        for raw in raw_items or []:
            container_id = raw.get("containerId") or ""
            if not container_id:
                continue
            record = AdRecord(
                id=make_ad_id(session_id, container_id),
                origin_session_id=session_id,
                container_id=container_id,
                source_type=raw.get("sourceType") or "network",
                network=raw.get("network") or "generic",
                headline=raw.get("headline") or "",
                body=raw.get("label") or "",
                image=raw.get("image") or "",
                link=raw.get("link") or "",
                size=raw.get("size") or "",
                score=score_network_match(raw),
                position=AdPosition.from_dict(raw.get("position")),
            )
            if not (record.headline or record.body):
                # 서드파티 iframe 내용은 읽을 수 없다
                record.advertiser = PROTECTED_ADVERTISER
                record.headline = PROTECTED_HEADLINE
                record.restricted = True
                record.access_note = f"third-party frame: {raw.get('src') or raw.get('tag')}"
            if is_valid_ad(record):
                records.append(record)
        return records

    async def _detect_candidates(self, page, session_id: str) -> list[AdRecord]:
        if self.rules.empty:
            return []
        try:
            raw_items = await self._evaluate(page, CANDIDATE_SCAN_JS, {
                **self._base_opts(),
                "selectors": list(self.rules.selectors),
                "limit": CANDIDATE_LIMIT,
            })
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("[detector] 학습 후보 스캔 실패, 고정 시그니처만 사용: {}", e)
            return []

        records = []
        for raw in raw_items or []:
            score = score_candidate(raw)
            if score < CANDIDATE_MIN_SCORE:
                continue
            container_id = raw.get("containerId") or ""
            if not container_id:
                continue
            record = AdRecord(
                id=make_ad_id(session_id, container_id),
                origin_session_id=session_id,
                container_id=container_id,
                source_type=SOURCE_LEARNED,
                network="unknown",
                headline=raw.get("headline") or "",
                link=raw.get("link") or "",
                image=raw.get("image") or "",
                size=raw.get("size") or "",
                score=score,
                position=AdPosition.from_dict(raw.get("position")),
            )
            if is_valid_ad(record):
                records.append(record)
        return records

    def _observe(self, native_raw: list[dict], results: list[AdRecord]):
        """확정(native) 광고의 컨테이너 메타데이터만 학습한다."""
        confirmed = {r.container_id for r in results if r.source_type == SOURCE_NATIVE}
        samples = []
        for raw in native_raw:
            if raw.get("containerId") not in confirmed:
                continue
            sample = dict(raw.get("meta") or {})
            if str(sample.get("id") or "").startswith(NATIVE_ID_PREFIX):
                sample["id"] = ""
            samples.append(sample)
        if samples:
            added = self.rules.observe(samples)
            if added:
                logger.debug("[detector] 후보 셀렉터 {}개 추가 (총 {})", added, len(self.rules.selectors))
