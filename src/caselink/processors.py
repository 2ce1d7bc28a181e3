"""Per-record repair logic: gather, score, validate.

Processors never write to the record. They return a ``RecordResult`` whose
``changes`` the batch driver applies under its lock.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .config import RepairConfig
from .fetching import HttpClient
from .gatherers import DirectIdGatherer, Gatherer, dedupe_candidates
from .logger import RunLogger
from .models import CampaignRecord, Candidate, Outcome, RecordResult
from .pages import extract_page_images
from .scoring import rank
from .urls import (
    clean_case_url,
    detect_video,
    is_blocked_screenshot,
    is_placeholder_thumbnail,
    is_video_url,
    looks_like_image_url,
    next_thumbnail_fallback,
    normalize_url,
    screenshot_thumbnail,
)
from .validation import Validator, is_known_bad_url


def needs_outbound(record: CampaignRecord) -> bool:
    return not normalize_url(record.outbound_url) or is_known_bad_url(record.outbound_url)


def has_bad_thumbnail(record: CampaignRecord) -> bool:
    thumb = normalize_url(record.thumbnail_url)
    return not thumb or is_placeholder_thumbnail(thumb) or not looks_like_image_url(thumb)


TARGET_FILTERS: Dict[str, Callable[[CampaignRecord], bool]] = {
    "all": lambda record: True,
    "missing_outbound": needs_outbound,
    "video_outbound": lambda record: is_video_url(record.outbound_url),
    "missing_thumbnail": lambda record: not normalize_url(record.thumbnail_url),
    "bad_thumbnail": has_bad_thumbnail,
}


def in_year_range(record: CampaignRecord, start_year: Optional[int], end_year: Optional[int]) -> bool:
    if start_year is None and end_year is None:
        return True
    if record.year is None:
        return False
    if start_year is not None and record.year < start_year:
        return False
    return end_year is None or record.year <= end_year


class RecordProcessor:
    command = ""
    mutates = True

    def __init__(
        self,
        config: RepairConfig,
        validator: Validator,
        gatherers: Sequence[Gatherer] = (),
        logger: Optional[RunLogger] = None,
    ) -> None:
        self.config = config
        self.validator = validator
        self.gatherers = list(gatherers)
        self.logger = logger

    @property
    def http(self) -> HttpClient:
        return self.validator.http

    def wants(self, record: CampaignRecord) -> bool:
        target = TARGET_FILTERS[self.config.target]
        return target(record) and in_year_range(record, self.config.start_year, self.config.end_year)

    def process(self, record: CampaignRecord) -> RecordResult:
        raise NotImplementedError

    def page_images(self, page_url: str) -> List[str]:
        url = clean_case_url(page_url)
        if not url or self.validator.is_known_bad(url):
            return []
        res = self.http.get(url)
        if not res.ok or not res.text:
            return []
        return extract_page_images(res.text, res.url or url)


class LinkRepairProcessor(RecordProcessor):
    """Replace dead or blocked outbound links with the best validated candidate."""

    command = "repair-links"

    def threshold(self, cand: Candidate) -> float:
        per_source = self.config.min_video_score if cand.is_video else self.config.min_web_score
        return max(self.config.min_score, per_source)

    def current_is_good(self, url: str) -> bool:
        if not url or not self.validator.is_allowed_host(url):
            return False
        if not self.validator.is_live(url).ok:
            return False
        platform, vid = detect_video(url)
        return not vid or self.validator.is_available_media(vid, platform)

    def gather(self, record: CampaignRecord) -> List[Candidate]:
        found: List[Candidate] = []
        for gatherer in self.gatherers:
            found.extend(gatherer.gather(record))
        return dedupe_candidates(found)

    def process(self, record: CampaignRecord) -> RecordResult:
        current = clean_case_url(record.outbound_url)
        if self.current_is_good(current):
            return RecordResult(Outcome.KEPT, old_url=record.outbound_url, new_url=record.outbound_url)

        _, dead_id = detect_video(current)
        candidates = [
            cand
            for cand in self.gather(record)
            if clean_case_url(cand.url) != current and not (dead_id and cand.video_id == dead_id)
        ]
        if not candidates:
            return RecordResult(Outcome.NO_CANDIDATES, old_url=record.outbound_url)

        ranked = rank(record, candidates, self.config.preferred_hosts)
        selection = self.validator.select(ranked, self.threshold)
        best = selection.best
        if selection.accepted is None:
            return RecordResult(
                selection.outcome,
                score=best.score if best else None,
                source=best.source if best else "",
                old_url=record.outbound_url,
                note=best.url if best else "",
            )

        cand = selection.accepted
        changes = {"outboundUrl": cand.url}
        thumb = cand.thumbnail
        if not thumb:
            thumb = self.validator.select_image(self.page_images(cand.url))
        if thumb:
            changes["thumbnailUrl"] = thumb
        return RecordResult(
            Outcome.REPLACED,
            changes=changes,
            score=cand.score,
            source=cand.source,
            old_url=record.outbound_url,
            new_url=cand.url,
        )


class ThumbnailRepairProcessor(RecordProcessor):
    """Find a working preview image for records whose thumbnail is missing or broken."""

    command = "repair-thumbnails"

    def __init__(
        self,
        config: RepairConfig,
        validator: Validator,
        gatherers: Sequence[Gatherer] = (),
        logger: Optional[RunLogger] = None,
    ) -> None:
        super().__init__(config, validator, gatherers or [DirectIdGatherer(logger=logger)], logger)

    def ladder(self, url: str) -> List[str]:
        out = []
        step = next_thumbnail_fallback(url)
        while step and step not in out:
            out.append(step)
            step = next_thumbnail_fallback(step)
        return out

    def screenshot(self, pages: Sequence[str]) -> str:
        """Rendered screenshot of the first usable case page."""
        for page in pages:
            if self.validator.is_known_bad(page):
                continue
            shot = screenshot_thumbnail(page)
            if shot and not is_blocked_screenshot(shot):
                return shot
        return ""

    def staged_sources(self, record: CampaignRecord) -> Iterable[tuple]:
        """Yield (source, urls) stages, cheapest first; page stages fetch lazily."""
        direct = []
        for gatherer in self.gatherers:
            direct.extend(c.thumbnail for c in gatherer.gather(record) if c.thumbnail)
        yield "direct", direct
        yield "ladder", self.ladder(record.thumbnail_url)
        pages: List[str] = []
        for page in (record.outbound_url, record.source_url):
            page_url = clean_case_url(page)
            if not page_url or page_url in pages:
                continue
            pages.append(page_url)
            yield "page", self.page_images(page_url)
        yield "screenshot", [self.screenshot(pages)]

    def process(self, record: CampaignRecord) -> RecordResult:
        current = normalize_url(record.thumbnail_url)
        if current and not is_placeholder_thumbnail(current) and self.validator.is_image_content(current):
            return RecordResult(Outcome.KEPT, old_url=record.thumbnail_url, new_url=record.thumbnail_url)

        tried = 0
        for source, urls in self.staged_sources(record):
            urls = [url for url in urls if url and url != current]
            if not urls:
                continue
            tried += len(urls)
            found = self.validator.select_image(urls)
            if found:
                return RecordResult(
                    Outcome.REPLACED,
                    changes={"thumbnailUrl": found},
                    source=source,
                    old_url=record.thumbnail_url,
                    new_url=found,
                )
        outcome = Outcome.UNAVAILABLE if tried else Outcome.NO_CANDIDATES
        return RecordResult(outcome, old_url=record.thumbnail_url)


class LinkAuditProcessor(RecordProcessor):
    """Report dead outbound links without touching the dataset."""

    command = "audit-links"
    mutates = False

    def wants(self, record: CampaignRecord) -> bool:
        return bool(normalize_url(record.outbound_url)) and super().wants(record)

    def process(self, record: CampaignRecord) -> RecordResult:
        url = normalize_url(record.outbound_url)
        live = self.validator.is_live(url)
        if not live.ok:
            reason = f"status={live.status}" + (f" {live.error}" if live.error else "")
            return RecordResult(Outcome.UNAVAILABLE, old_url=url, note=reason)
        platform, vid = detect_video(url)
        if vid and not self.validator.is_available_media(vid, platform):
            return RecordResult(Outcome.UNAVAILABLE, old_url=url, note=f"{platform} unavailable")
        return RecordResult(Outcome.KEPT, old_url=url, new_url=url)


class ThumbnailAuditProcessor(RecordProcessor):
    """Report broken or placeholder thumbnails without touching the dataset."""

    command = "audit-thumbnails"
    mutates = False

    def wants(self, record: CampaignRecord) -> bool:
        return bool(normalize_url(record.thumbnail_url)) and super().wants(record)

    def process(self, record: CampaignRecord) -> RecordResult:
        url = normalize_url(record.thumbnail_url)
        if is_placeholder_thumbnail(url):
            return RecordResult(Outcome.UNAVAILABLE, old_url=url, note="placeholder")
        res = self.validator.check_image(url)
        if not res.ok:
            reason = f"status={res.status}" + (f" {res.error}" if res.error else "")
            return RecordResult(Outcome.UNAVAILABLE, old_url=url, note=reason)
        if not res.content_type.startswith("image/"):
            return RecordResult(Outcome.UNAVAILABLE, old_url=url, note=f"content-type={res.content_type or 'unknown'}")
        return RecordResult(Outcome.KEPT, old_url=url, new_url=url)


PROCESSORS = {
    LinkRepairProcessor.command: LinkRepairProcessor,
    ThumbnailRepairProcessor.command: ThumbnailRepairProcessor,
    LinkAuditProcessor.command: LinkAuditProcessor,
    ThumbnailAuditProcessor.command: ThumbnailAuditProcessor,
}
