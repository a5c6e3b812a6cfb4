"""학습된 후보 셀렉터: 버전 관리되는 주입형 규칙 객체.

확정 광고와 함께 관측된 class / id / attribute 빈도를 누적하고,
임계치(class ≥ 2, id ≥ 1, attribute ≥ 2)를 넘은 것을 후보 셀렉터로 승격한다.
규칙은 참고용일 뿐 확정 매칭을 만들지 않는다.

저장 경로: {learned_rules_path} (기본 data/learned_selectors.json)
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

RULES_VERSION = 1

CLASS_MIN_COUNT = 2
ID_MIN_COUNT = 1
ATTRIBUTE_MIN_COUNT = 2
MAX_SELECTORS = 200

_IDENT_RE = re.compile(r"^-?[A-Za-z_][A-Za-z0-9_-]*$")
# 광고 여부와 무관하게 어디에나 붙는 속성
_IGNORED_ATTRIBUTES = {"id", "class", "style", "src", "href", "width", "height", "title", "alt"}


@dataclass
class LearnedRules:
    version: int = RULES_VERSION
    class_counts: dict[str, int] = field(default_factory=dict)
    id_counts: dict[str, int] = field(default_factory=dict)
    attribute_counts: dict[str, int] = field(default_factory=dict)
    selectors: list[str] = field(default_factory=list)
    updated_at: str = ""

    @property
    def empty(self) -> bool:
        return not self.selectors

    def observe(self, samples: list[dict]) -> int:
        """확정 광고 컨테이너 메타데이터를 누적. 새로 승격된 셀렉터 수 반환.

        samples: [{"classes": [...], "id": "...", "attributes": [...]}]
        """
        for sample in samples:
            for cls_name in set(sample.get("classes") or []):
                if _IDENT_RE.match(cls_name):
                    self.class_counts[cls_name] = self.class_counts.get(cls_name, 0) + 1
            elem_id = sample.get("id") or ""
            if elem_id and _IDENT_RE.match(elem_id):
                self.id_counts[elem_id] = self.id_counts.get(elem_id, 0) + 1
            for attr in set(sample.get("attributes") or []):
                if attr not in _IGNORED_ATTRIBUTES and _IDENT_RE.match(attr):
                    self.attribute_counts[attr] = self.attribute_counts.get(attr, 0) + 1

        before = set(self.selectors)
        self.selectors = self._promote()
        self.updated_at = datetime.now(UTC).isoformat()
        return len(set(self.selectors) - before)

    def _promote(self) -> list[str]:
        ranked: list[tuple[int, str]] = []
        ranked += [(n, f".{c}") for c, n in self.class_counts.items() if n >= CLASS_MIN_COUNT]
        ranked += [(n, f"#{i}") for i, n in self.id_counts.items() if n >= ID_MIN_COUNT]
        ranked += [(n, f"[{a}]") for a, n in self.attribute_counts.items() if n >= ATTRIBUTE_MIN_COUNT]
        ranked.sort(key=lambda item: (-item[0], item[1]))
        return [selector for _, selector in ranked[:MAX_SELECTORS]]

    @classmethod
    def merged(cls, base: "LearnedRules", copies: list["LearnedRules"]) -> "LearnedRules":
        """base 에서 출발한 사본들의 증가분을 모두 더한 규칙. 사본끼리 덮어쓰지 않는다."""
        result = cls(
            class_counts=dict(base.class_counts),
            id_counts=dict(base.id_counts),
            attribute_counts=dict(base.attribute_counts),
            updated_at=base.updated_at,
        )
        pairs = (
            ("class_counts", base.class_counts),
            ("id_counts", base.id_counts),
            ("attribute_counts", base.attribute_counts),
        )
        for rules in copies:
            for name, base_counts in pairs:
                target = getattr(result, name)
                for key, count in getattr(rules, name).items():
                    delta = count - base_counts.get(key, 0)
                    if delta > 0:
                        target[key] = target.get(key, 0) + delta
            if rules.updated_at > result.updated_at:
                result.updated_at = rules.updated_at
        result.selectors = result._promote() or list(base.selectors)
        return result

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "selectors": list(self.selectors),
            "patterns": {
                "classes": dict(self.class_counts),
                "ids": dict(self.id_counts),
                "attributes": dict(self.attribute_counts),
            },
            "lastUpdated": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearnedRules":
        if not isinstance(data, dict):
            raise ValueError("rules payload must be an object")
        version = int(data.get("version", RULES_VERSION))
        if version > RULES_VERSION:
            raise ValueError(f"unsupported rules version {version}")
        patterns = data.get("patterns") or {}
        if not isinstance(patterns, dict):
            raise ValueError("patterns must be an object")
        rules = cls(
            version=RULES_VERSION,
            class_counts={str(k): int(v) for k, v in (patterns.get("classes") or {}).items()},
            id_counts={str(k): int(v) for k, v in (patterns.get("ids") or {}).items()},
            attribute_counts={str(k): int(v) for k, v in (patterns.get("attributes") or {}).items()},
            updated_at=str(data.get("lastUpdated") or ""),
        )
        stored = [s for s in data.get("selectors") or [] if isinstance(s, str)]
        rules.selectors = rules._promote() or stored
        return rules


class LearnedRuleStore:
    """파일 기반 규칙 저장소. 없거나 깨진 파일은 빈 규칙으로 취급."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> LearnedRules:
        if not self.path.exists():
            return LearnedRules()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            rules = LearnedRules.from_dict(data)
            logger.debug("[learned-rules] {} 로드: 셀렉터 {}개", self.path, len(rules.selectors))
            return rules
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("[learned-rules] {} 로드 실패, 고정 시그니처만 사용: {}", self.path, e)
            return LearnedRules()

    def save(self, rules: LearnedRules):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(rules.to_dict(), ensure_ascii=False, indent=2)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".rules-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp, self.path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug("[learned-rules] {} 저장: 셀렉터 {}개", self.path, len(rules.selectors))

    def reset(self) -> LearnedRules:
        rules = LearnedRules()
        self.save(rules)
        return rules
