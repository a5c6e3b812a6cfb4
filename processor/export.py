"""통합 광고 평면 내보내기 (CSV / JSON).

컬럼 순서 고정: id, timestamp, advertiser, headline, body, link, image, containerId, size
"""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Iterable

from database.models import ConsolidatedAd

EXPORT_COLUMNS = (
    "id", "timestamp", "advertiser", "headline", "body",
    "link", "image", "containerId", "size",
)

UTF8_BOM = "\ufeff"


def _safe(value) -> str:
    if value is None:
        return ""
    return str(value)


def export_row(ad: ConsolidatedAd) -> dict:
    return {
        "id": ad.ad_id or ad.content_key,
        "timestamp": ad.first_seen_at.isoformat() if ad.first_seen_at else "",
        "advertiser": _safe(ad.advertiser),
        "headline": _safe(ad.headline),
        "body": _safe(ad.body),
        "link": _safe(ad.link_url),
        "image": _safe(ad.image_url),
        "containerId": _safe(ad.container_id),
        "size": _safe(ad.size),
    }


def to_csv(ads: Iterable[ConsolidatedAd], bom: bool = True) -> str:
    """모든 셀을 따옴표로 감싼 CSV. Excel 한글 깨짐 방지로 BOM 기본 포함."""
    buf = io.StringIO()
    if bom:
        buf.write(UTF8_BOM)
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for ad in ads:
        row = export_row(ad)
        writer.writerow([row[c] for c in EXPORT_COLUMNS])
    return buf.getvalue()


def to_json(ads: Iterable[ConsolidatedAd]) -> str:
    return json.dumps([export_row(ad) for ad in ads], ensure_ascii=False, indent=2)
