"""Candidate gatherers: one adapter per source of replacement links.

Every gatherer exposes ``gather(record) -> list[Candidate]`` and never raises.
A failed request or an unparseable page yields an empty (or partial) list.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from .fetching import HttpClient
from .logger import RunLogger
from .models import CampaignRecord, Candidate
from .pages import (
    extract_anchors,
    extract_title,
    parse_bing_results,
    parse_duckduckgo_results,
    parse_youtube_results,
)
from .scoring import DEFAULT_PREFERRED_HOSTS, score
from .urls import (
    SEARCH_ENGINE_HOSTS,
    VIDEO_HOSTS,
    YOUTUBE,
    detect_video,
    extract_host,
    found_url,
    host_matches,
    video_thumbnail,
    watch_url,
    web_search_url,
    youtube_search_url,
)

VIDEO_RESULT_LIMIT = 30
WEB_RESULT_LIMIT = 16
SOURCE_PAGE_LIMIT = 12
# YouTube result pages carry a large inline JSON blob before the first results.
VIDEO_PAGE_MAX_BYTES = 1_500_000
SOURCE_PAGE_MIN_SCORE = 0.3
MIN_AWARD_RESULTS = 2
SOURCE_PRIORITY = {"direct": 0, "video": 1}
AWARD_SITES = (
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
)


def record_query(record: CampaignRecord, *extra: str) -> str:
    parts = [record.title, record.brand, str(record.year or ""), *extra]
    return " ".join(part.strip() for part in parts if part and part.strip())


def award_query(record: CampaignRecord) -> str:
    sites = " OR ".join(f"site:{site}" for site in AWARD_SITES)
    return f"{record_query(record, 'case study')} ({sites})"


def attach_video(cand: Candidate) -> Candidate:
    """Fill the video fields of a candidate whose URL points at a video."""
    platform, vid = detect_video(cand.url)
    if vid:
        cand.platform = platform
        cand.video_id = vid
        cand.url = watch_url(vid, platform) or cand.url
        cand.thumbnail = cand.thumbnail or video_thumbnail(vid, platform)
    return cand


def dedupe_candidates(items: Iterable[Candidate]) -> List[Candidate]:
    """Merge candidates that point at the same URL.

    The richer title wins, and a video-source hit replaces a web hit.
    """
    by_url: Dict[str, Candidate] = {}
    for cand in items:
        url = found_url(cand.url)
        if not url:
            continue
        cand.url = url
        prev = by_url.get(url)
        if prev is None:
            by_url[url] = cand
            continue
        keep = cand if len(cand.title or "") > len(prev.title or "") else prev
        keep.source = min((prev.source, cand.source), key=lambda s: SOURCE_PRIORITY.get(s, len(SOURCE_PRIORITY)))
        by_url[url] = keep
    return list(by_url.values())


class Gatherer:
    name = "base"
    source = "web"

    def __init__(self, http: Optional[HttpClient] = None, logger: Optional[RunLogger] = None) -> None:
        self.http = http
        self.logger = logger

    def gather(self, record: CampaignRecord) -> List[Candidate]:
        try:
            return list(self._gather(record))
        except Exception as exc:
            if self.logger:
                self.logger.debug(f"[{self.name}] {record.id}: {type(exc).__name__}: {exc}")
            return []

    def _gather(self, record: CampaignRecord) -> Iterable[Candidate]:
        raise NotImplementedError


class DirectIdGatherer(Gatherer):
    """Video IDs already present on the record. No network."""

    name = "direct"
    source = "direct"

    def _gather(self, record: CampaignRecord) -> Iterable[Candidate]:
        seen = set()
        for url in (record.outbound_url, record.source_url, record.thumbnail_url):
            platform, vid = detect_video(url)
            if not vid or (platform, vid) in seen:
                continue
            seen.add((platform, vid))
            yield Candidate(
                url=watch_url(vid, platform),
                title=record.title,
                source=self.source,
                thumbnail=video_thumbnail(vid, platform),
                video_id=vid,
                platform=platform,
            )


class VideoSearchGatherer(Gatherer):
    name = "video"
    source = "video"

    def __init__(
        self,
        http: Optional[HttpClient] = None,
        logger: Optional[RunLogger] = None,
        limit: int = VIDEO_RESULT_LIMIT,
    ) -> None:
        super().__init__(http, logger)
        self.limit = limit

    def _gather(self, record: CampaignRecord) -> Iterable[Candidate]:
        query = record_query(record)
        if not query or self.http is None:
            return []
        res = self.http.get(youtube_search_url(query), max_bytes=VIDEO_PAGE_MAX_BYTES)
        if not res.ok or not res.text:
            return []
        out = []
        for item in parse_youtube_results(res.text, limit=self.limit):
            vid = item["videoId"]
            out.append(
                Candidate(
                    url=watch_url(vid, YOUTUBE),
                    title=item.get("title", ""),
                    description=item.get("channel", ""),
                    source=self.source,
                    thumbnail=video_thumbnail(vid, YOUTUBE),
                    video_id=vid,
                    platform=YOUTUBE,
                )
            )
        return out


class WebSearchGatherer(Gatherer):
    """HTML search engines, award sites first, then a broad query."""

    name = "web"
    source = "web"
    engines = ("duckduckgo", "bing")

    def __init__(
        self,
        http: Optional[HttpClient] = None,
        logger: Optional[RunLogger] = None,
        limit: int = WEB_RESULT_LIMIT,
        engines: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(http, logger)
        self.limit = limit
        if engines:
            self.engines = tuple(engines)

    def search(self, query: str) -> List[Candidate]:
        out: List[Candidate] = []
        for engine in self.engines:
            res = self.http.get(web_search_url(engine, query))
            if not res.ok or not res.text:
                continue
            parse = parse_bing_results if engine == "bing" else parse_duckduckgo_results
            for url, title in parse(res.text, limit=self.limit):
                if host_matches(extract_host(url), SEARCH_ENGINE_HOSTS):
                    continue
                out.append(attach_video(Candidate(url=url, title=title, source=self.source)))
        return dedupe_candidates(out)[: self.limit]

    def _gather(self, record: CampaignRecord) -> Iterable[Candidate]:
        if not record_query(record) or self.http is None:
            return []
        found = self.search(award_query(record))
        if len(found) < MIN_AWARD_RESULTS:
            found = dedupe_candidates(found + self.search(record_query(record)))
        return found[: self.limit]


class SourcePageGatherer(Gatherer):
    """Outbound anchors on the page the record was scraped from."""

    name = "sourcepage"
    source = "sourcepage"

    def __init__(
        self,
        http: Optional[HttpClient] = None,
        logger: Optional[RunLogger] = None,
        allowed_hosts: Sequence[str] = DEFAULT_PREFERRED_HOSTS,
        limit: int = SOURCE_PAGE_LIMIT,
    ) -> None:
        super().__init__(http, logger)
        self.allowed_hosts = tuple(allowed_hosts)
        self.limit = limit

    def _gather(self, record: CampaignRecord) -> Iterable[Candidate]:
        page_url = found_url(record.source_url)
        if not page_url or self.http is None:
            return []
        res = self.http.get(page_url)
        if not res.ok or not res.text:
            return []
        page_host = extract_host(res.url or page_url)
        page_title = extract_title(res.text)
        out: List[Candidate] = []
        for url, text in extract_anchors(res.text, res.url or page_url):
            host = extract_host(url)
            if not host or host == page_host:
                continue
            if not host_matches(host, self.allowed_hosts + VIDEO_HOSTS):
                continue
            # Video anchors are often bare thumbnails, so the page title stands in.
            label = text or page_title
            if score(record, label, url) < SOURCE_PAGE_MIN_SCORE:
                continue
            out.append(attach_video(Candidate(url=url, title=label, description=page_title, source=self.source)))
            if len(out) >= self.limit:
                break
        return dedupe_candidates(out)


GATHERERS = {
    "direct": DirectIdGatherer,
    "video": VideoSearchGatherer,
    "web": WebSearchGatherer,
    "sourcepage": SourcePageGatherer,
}
DEFAULT_GATHERERS = ("direct", "video", "web", "sourcepage")


def build_gatherers(
    names: Sequence[str],
    http: Optional[HttpClient],
    logger: Optional[RunLogger] = None,
    preferred_hosts: Sequence[str] = DEFAULT_PREFERRED_HOSTS,
) -> List[Gatherer]:
    out: List[Gatherer] = []
    for name in names:
        cls = GATHERERS.get(name)
        if cls is None:
            raise ValueError(f"Unknown gatherer: {name}. Choose from: {', '.join(GATHERERS)}")
        if cls is SourcePageGatherer:
            out.append(SourcePageGatherer(http, logger, allowed_hosts=preferred_hosts))
        else:
            out.append(cls(http, logger))
    return out
