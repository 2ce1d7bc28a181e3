"""Offline normalisation pass over the dataset. No network."""

from __future__ import annotations

from typing import Dict, Iterable

from .models import CampaignRecord
from .urls import (
    THUMBNAIL_QUALITIES,
    YOUTUBE,
    YOUTUBE_IMAGE_HOSTS,
    clean_case_url,
    decode_redirect_wrapper,
    extract_host,
    extract_video_id,
    first_video,
    host_matches,
    is_placeholder_thumbnail,
    is_redirect_wrapper,
    looks_like_image_url,
    normalize_url,
    thumbnail_for_link,
    video_thumbnail,
)

COUNTERS = (
    "outboundCleaned",
    "outboundBlanked",
    "sourceCleaned",
    "thumbnailBlanked",
    "thumbnailCanonicalized",
    "thumbnailDerived",
)


def _ytimg_quality(url: str) -> str:
    for quality in THUMBNAIL_QUALITIES:
        if url.endswith(f"/{quality}.jpg"):
            return quality
    return ""


def _sanitize_links(record: CampaignRecord, counts: Dict[str, int]) -> None:
    raw = record.outbound_url
    if raw:
        if is_redirect_wrapper(raw) and not decode_redirect_wrapper(raw):
            record.set("outboundUrl", "")
            counts["outboundBlanked"] += 1
        else:
            cleaned = clean_case_url(raw)
            if cleaned and cleaned != raw:
                record.set("outboundUrl", cleaned)
                counts["outboundCleaned"] += 1
    cleaned_source = clean_case_url(record.source_url)
    if cleaned_source and cleaned_source != record.source_url:
        # sourceUrl is provenance, so only its spelling is normalised here.
        record.source_url = cleaned_source
        counts["sourceCleaned"] += 1


def _sanitize_thumbnail(record: CampaignRecord, counts: Dict[str, int]) -> None:
    thumb = record.thumbnail_url
    if thumb and (is_placeholder_thumbnail(thumb) or is_redirect_wrapper(thumb)):
        record.set("thumbnailUrl", "")
        counts["thumbnailBlanked"] += 1
        thumb = ""
    if thumb and host_matches(extract_host(thumb), YOUTUBE_IMAGE_HOSTS):
        vid = extract_video_id(thumb, YOUTUBE)
        if not vid:
            platform, vid = first_video((record.outbound_url, record.source_url))
            if platform != YOUTUBE:
                vid = ""
        if vid:
            canonical = video_thumbnail(vid, YOUTUBE, _ytimg_quality(normalize_url(thumb)) or "hqdefault")
            if canonical != thumb:
                record.set("thumbnailUrl", canonical)
                counts["thumbnailCanonicalized"] += 1
            thumb = canonical
        else:
            record.set("thumbnailUrl", "")
            counts["thumbnailBlanked"] += 1
            thumb = ""
    if not looks_like_image_url(thumb):
        derived = thumbnail_for_link(record.outbound_url, record.source_url)
        if derived and derived != thumb:
            record.set("thumbnailUrl", derived)
            counts["thumbnailDerived"] += 1


def sanitize_records(records: Iterable[CampaignRecord]) -> Dict[str, int]:
    """Normalise links and thumbnails in place and return change counters.

    Tag sets are deduplicated when the dataset is loaded, so writing the
    records back is enough to clean ``topics`` and ``formatHints``.
    """
    counts = {key: 0 for key in COUNTERS}
    checked = 0
    for record in records:
        checked += 1
        _sanitize_links(record, counts)
        _sanitize_thumbnail(record, counts)
    counts["checked"] = checked
    return counts
