from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ATTR_BY_KEY = {
    "id": "id",
    "title": "title",
    "brand": "brand",
    "agency": "agency",
    "year": "year",
    "sourceUrl": "source_url",
    "outboundUrl": "outbound_url",
    "thumbnailUrl": "thumbnail_url",
    "awardTier": "award_tier",
    "awardCategory": "award_category",
    "categoryBucket": "category_bucket",
    "formatHints": "format_hints",
    "topics": "topics",
}

# Keys the repair pipeline is allowed to write back.
MUTABLE_KEYS = {"outboundUrl", "thumbnailUrl", "topics"}


class Outcome:
    REPLACED = "replaced"
    KEPT = "kept"
    NO_CANDIDATES = "no_candidates"
    LOW_SCORE = "low_score"
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    ERROR = "error"


OUTCOMES = (
    Outcome.REPLACED,
    Outcome.KEPT,
    Outcome.NO_CANDIDATES,
    Outcome.LOW_SCORE,
    Outcome.UNAVAILABLE,
    Outcome.REJECTED,
    Outcome.SKIPPED,
    Outcome.ERROR,
)


def counter_key(outcome: str) -> str:
    head, *rest = outcome.split("_")
    return head + "".join(part.title() for part in rest)


def utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def dedupe_tags(values: Any) -> List[str]:
    if not isinstance(values, (list, tuple)):
        return []
    out: List[str] = []
    seen: set[str] = set()
    for value in values:
        text = str(value or "").strip()
        key = text.lower()
        if not text or key in seen:
            continue
        seen.add(key)
        out.append(text)
    return out


def _coerce_year(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    return None


@dataclass
class CampaignRecord:
    id: str
    title: str = ""
    brand: str = ""
    agency: str = ""
    year: Optional[int] = None
    source_url: str = ""
    outbound_url: str = ""
    thumbnail_url: str = ""
    award_tier: str = ""
    award_category: str = ""
    category_bucket: str = ""
    format_hints: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)
    key_order: List[str] = field(default_factory=list, repr=False)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CampaignRecord":
        kwargs: Dict[str, Any] = {}
        for key, attr in ATTR_BY_KEY.items():
            if key not in payload:
                continue
            value = payload.get(key)
            if key == "year":
                kwargs[attr] = _coerce_year(value)
            elif key in {"topics", "formatHints"}:
                kwargs[attr] = dedupe_tags(value)
            elif key == "id":
                kwargs[attr] = str(value or "")
            else:
                kwargs[attr] = "" if value is None else str(value)
        extra = {k: v for k, v in payload.items() if k not in ATTR_BY_KEY}
        kwargs.setdefault("id", "")
        return cls(**kwargs, extra=extra, key_order=list(payload.keys()))

    def set(self, key: str, value: Any) -> None:
        if key not in MUTABLE_KEYS:
            raise KeyError(f"Field is not writable by the repair pipeline: {key}")
        if key == "topics":
            value = dedupe_tags(value)
        setattr(self, ATTR_BY_KEY[key], value)
        if key not in self.key_order:
            self.key_order.append(key)

    def identity_text(self) -> str:
        parts = [self.title, self.brand, self.agency, str(self.year or "")]
        return " ".join(part for part in parts if part)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key in self.key_order:
            if key in ATTR_BY_KEY:
                out[key] = getattr(self, ATTR_BY_KEY[key])
            elif key in self.extra:
                out[key] = self.extra[key]
        for key, value in self.extra.items():
            out.setdefault(key, value)
        return out


@dataclass
class Candidate:
    url: str
    title: str = ""
    source: str = "web"
    score: float = 0.0
    description: str = ""
    thumbnail: str = ""
    video_id: str = ""
    platform: str = ""

    @property
    def is_video(self) -> bool:
        return bool(self.video_id)


@dataclass
class Checkpoint:
    next_index: int = 0
    checked: int = 0
    counts: Dict[str, int] = field(default_factory=dict)
    updated_at: str = ""

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Checkpoint":
        counts: Dict[str, int] = {}
        for key, value in payload.items():
            if key in {"nextIndex", "next", "checked", "updatedAt"}:
                continue
            if isinstance(value, int) and not isinstance(value, bool):
                counts[key] = value
        next_index = payload.get("nextIndex", payload.get("next", 0))
        return cls(
            next_index=int(next_index or 0),
            checked=int(payload.get("checked") or 0),
            counts=counts,
            updated_at=str(payload.get("updatedAt") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"nextIndex": self.next_index, "checked": self.checked}
        payload.update(self.counts)
        payload["updatedAt"] = self.updated_at or utc_now_iso()
        return payload


@dataclass
class RecordResult:
    outcome: str
    changes: Dict[str, Any] = field(default_factory=dict)
    score: Optional[float] = None
    source: str = ""
    old_url: str = ""
    new_url: str = ""
    note: str = ""


@dataclass
class RunReport:
    command: str
    targets: int = 0
    checked: int = 0
    counts: Dict[str, int] = field(default_factory=dict)
    by_source: Dict[str, int] = field(default_factory=dict)
    changed: List[Dict[str, Any]] = field(default_factory=list)
    dead: List[Dict[str, Any]] = field(default_factory=list)
    min_score: Optional[float] = None
    start_index: int = 0
    end_index: int = 0
    interrupted: bool = False
    generated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "generatedAt": self.generated_at or utc_now_iso(),
            "command": self.command,
            "targets": self.targets,
            "checked": self.checked,
            "range": [self.start_index, self.end_index],
        }
        for outcome in OUTCOMES:
            payload[counter_key(outcome)] = self.counts.get(outcome, 0)
        payload["bySource"] = dict(self.by_source)
        if self.min_score is not None:
            payload["minScore"] = self.min_score
        if self.interrupted:
            payload["interrupted"] = True
        payload["changed"] = list(self.changed)
        if self.dead:
            payload["dead"] = list(self.dead)
        return payload
