"""Heuristic text matching between a campaign record and a candidate link."""

from __future__ import annotations

import math
import re
import unicodedata
from typing import Iterable, List, Sequence, Set

from .models import CampaignRecord, Candidate
from .urls import VIDEO_HOSTS, extract_host, host_matches

STOPWORDS = frozenset(
    {
        "the",
        "and",
        "for",
        "with",
        "from",
        "that",
        "this",
        "are",
        "was",
        "you",
        "your",
        "our",
        "official",
        "commercial",
        "campaign",
        "advert",
        "advertisement",
        "spot",
        "promo",
        "video",
        "feat",
        "featuring",
        "extended",
        "full",
        "version",
        "hd",
    }
)

DEFAULT_PREFERRED_HOSTS = (
    "youtube.com",
    "youtu.be",
    "vimeo.com",
    "dandad.org",
    "liaawards.com",
    "oneclub.org",
    "adfest.com",
    "spikes.asia",
    "clios.com",
    "lbbonline.com",
    "adsoftheworld.com",
    "canneslions.com",
)

VIDEO_HOST_BONUS = 0.22
PREFERRED_HOST_BONUS = 0.12
YEAR_BONUS = 0.05
BRAND_BONUS = 0.06
TITLE_BONUS = 0.05
# Candidates derived from an ID already on the record outrank any search hit.
DIRECT_SCORE = 1.0

GARBAGE_PENALTIES = (
    (re.compile(r"\breaction\b"), 0.25),
    (re.compile(r"\bcompilation\b"), 0.30),
    (re.compile(r"\branking\b"), 0.20),
    (re.compile(r"\bexplained\b"), 0.15),
    (re.compile(r"\blive stream\b"), 0.30),
    (re.compile(r"\bbest ads\b"), 0.20),
)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WS_RE = re.compile(r"\s+")


def normalize_text(text: object) -> str:
    decomposed = unicodedata.normalize("NFKD", str(text or ""))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    lowered = _NON_ALNUM_RE.sub(" ", stripped.lower())
    return _WS_RE.sub(" ", lowered).strip()


def tokenize(text: object) -> Set[str]:
    return {tok for tok in normalize_text(text).split(" ") if len(tok) >= 3 and tok not in STOPWORDS}


def identity_tokens(record: CampaignRecord) -> Set[str]:
    return tokenize(record.identity_text())


def garbage_penalty(candidate_text: str, identity: str = "") -> float:
    blob = normalize_text(candidate_text)
    total = 0.0
    for pattern, weight in GARBAGE_PENALTIES:
        if pattern.search(blob) and not pattern.search(identity):
            total += weight
    return total


def score(
    record: CampaignRecord,
    candidate_text: str,
    url: str = "",
    preferred_hosts: Sequence[str] = DEFAULT_PREFERRED_HOSTS,
) -> float:
    wanted = identity_tokens(record)
    got = tokenize(candidate_text)
    if not wanted or not got:
        return 0.0
    overlap = len(wanted & got)
    value = overlap / max(4, min(16, len(wanted)))

    host = extract_host(url) if url else ""
    if host_matches(host, VIDEO_HOSTS):
        value += VIDEO_HOST_BONUS
    elif host_matches(host, preferred_hosts):
        value += PREFERRED_HOST_BONUS

    blob = normalize_text(candidate_text)
    if record.year and str(record.year) in blob:
        value += YEAR_BONUS
    brand = normalize_text(record.brand)
    if brand and brand in blob:
        value += BRAND_BONUS
    title = normalize_text(record.title)
    if title and (title in blob or blob in title):
        value += TITLE_BONUS

    value -= garbage_penalty(candidate_text, normalize_text(record.identity_text()))
    return value if math.isfinite(value) else 0.0


def host_rank(url: str, preferred_hosts: Sequence[str] = DEFAULT_PREFERRED_HOSTS) -> int:
    host = extract_host(url)
    for idx, domain in enumerate(preferred_hosts):
        if host_matches(host, (domain,)):
            return idx
    return len(preferred_hosts)


def rank(
    record: CampaignRecord,
    candidates: Iterable[Candidate],
    preferred_hosts: Sequence[str] = DEFAULT_PREFERRED_HOSTS,
) -> List[Candidate]:
    """Score candidates in place and order them best-first.

    Ties go to the higher-ranked host, then to first-seen order.
    """
    indexed = []
    for order, cand in enumerate(candidates):
        text = " ".join(part for part in (cand.title, cand.description) if part)
        cand.score = score(record, text, cand.url, preferred_hosts)
        if cand.source == "direct":
            cand.score = max(cand.score, DIRECT_SCORE)
        indexed.append((order, cand))
    indexed.sort(key=lambda pair: (-pair[1].score, host_rank(pair[1].url, preferred_hosts), pair[0]))
    return [cand for _, cand in indexed]
