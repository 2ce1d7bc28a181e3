"""
URL / identity helpers
----------------------
Pure string transforms. Every function here is total: malformed input yields
an empty string (or False), never an exception. Anything in the package that
needs a canonical video, thumbnail, oEmbed or search URL builds it here.
"""

from __future__ import annotations

import base64
import binascii
import html
import re
from typing import Iterable, Tuple
from urllib.parse import parse_qs, quote, quote_plus, unquote, urljoin, urlparse, urlunparse

YOUTUBE = "youtube"
VIMEO = "vimeo"
PLATFORMS = (YOUTUBE, VIMEO)

YOUTUBE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
VIMEO_ID_RE = re.compile(r"^\d{6,12}$")

YOUTUBE_HOSTS = ("youtube.com", "youtube-nocookie.com", "youtu.be")
YOUTUBE_IMAGE_HOSTS = ("ytimg.com", "img.youtube.com")
VIMEO_HOSTS = ("vimeo.com",)
VIMEO_IMAGE_HOSTS = ("vumbnail.com",)
VIDEO_HOSTS = ("youtube.com", "youtu.be", "youtube-nocookie.com", "vimeo.com")

SEARCH_ENGINE_HOSTS = ("bing.com", "duckduckgo.com", "google.com")

THUMBNAIL_QUALITIES = ("maxresdefault", "sddefault", "hqdefault", "mqdefault", "default")
DEFAULT_THUMBNAIL_QUALITY = "hqdefault"

IMAGE_EXT_RE = re.compile(r"\.(?:jpe?g|png|webp|gif|avif|bmp|svg)$", re.IGNORECASE)
YTIMG_FILE_RE = re.compile(r"/(?:maxresdefault|sddefault|hqdefault|mqdefault|default)\.jpg$", re.IGNORECASE)
IMAGE_CDN_HINTS = (
    "vumbnail.com",
    "i.vimeocdn.com",
    "image.adsoftheworld.com",
    "builder.io",
    "filespin.io",
    "prezly.com",
    "image.thum.io",
)

PLACEHOLDER_THUMBNAILS = (
    re.compile(r"^https?://(?:www\.)?lovetheworkmore\.com/wp-content/uploads/2021/06/thumbnail-with-correct-ratio-scaled\.jpg$", re.I),
    re.compile(r"^https?://(?:www\.)?dandad\.org/images/social\.jpg$", re.I),
    re.compile(r"^https?://[^/]+/_gfx/loadingAnim\.gif$", re.I),
    re.compile(r"^https?://iknow-zhidao\.bdimg\.com/.*triangle\.[a-f0-9]+\.svg$", re.I),
)
BLOCKED_SCREENSHOT_HOSTS = ("docs.google.com", "zhidao.baidu.com", "bing.com")
THUMIO_MARKER = "/noanimate/"


def clean(raw: object) -> str:
    """Trim and decode HTML entities until the text stops changing."""
    text = str(raw or "").strip()
    while True:
        decoded = html.unescape(text).strip()
        if decoded == text:
            return text
        text = decoded


def _parse(url: str):
    try:
        parsed = urlparse(url)
        # .hostname / .port raise on malformed netlocs (bad IPv6, bad port)
        host = parsed.hostname
        parsed.port
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not host:
        return None
    return parsed


def normalize_url(raw: object) -> str:
    url = clean(raw)
    if url.startswith("//"):
        url = "https:" + url
    if not url or any(ch.isspace() for ch in url):
        return ""
    if any(ord(ch) < 32 for ch in url):
        return ""
    if _parse(url) is None:
        return ""
    return url


def extract_host(url: object) -> str:
    parsed = _parse(normalize_url(url))
    if parsed is None:
        return ""
    host = (parsed.hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def host_matches(host: str, domains: Iterable[str]) -> bool:
    host = (host or "").lower()
    if not host:
        return False
    for domain in domains:
        d = domain.strip().lower()
        if d.startswith("www."):
            d = d[4:]
        if d and (host == d or host.endswith("." + d)):
            return True
    return False


def absolute_url(raw: object, base: str) -> str:
    text = clean(raw)
    if not text:
        return ""
    try:
        joined = urljoin(base, text)
    except ValueError:
        return ""
    return normalize_url(joined)


# ============================== Video IDs ============================

def _youtube_id(parsed) -> str:
    host = (parsed.hostname or "").lower()
    segments = [seg for seg in (parsed.path or "").split("/") if seg]
    if host_matches(host, ("youtu.be",)):
        vid = segments[0] if segments else ""
        return vid if YOUTUBE_ID_RE.match(vid) else ""
    if host_matches(host, YOUTUBE_IMAGE_HOSTS):
        if len(segments) >= 2 and segments[0] in ("vi", "vi_webp") and YOUTUBE_ID_RE.match(segments[1]):
            return segments[1]
        return ""
    if not host_matches(host, ("youtube.com", "youtube-nocookie.com")):
        return ""
    if segments[:1] == ["watch"] or not segments:
        vid = (parse_qs(parsed.query).get("v") or [""])[0]
        return vid if YOUTUBE_ID_RE.match(vid) else ""
    if len(segments) >= 2 and segments[0] in ("shorts", "embed", "live", "v"):
        vid = segments[1]
        return vid if YOUTUBE_ID_RE.match(vid) else ""
    return ""


def _vimeo_id(parsed) -> str:
    host = (parsed.hostname or "").lower()
    segments = [seg for seg in (parsed.path or "").split("/") if seg]
    if host_matches(host, VIMEO_IMAGE_HOSTS):
        stem = segments[0].rsplit(".", 1)[0] if segments else ""
        stem = stem.split("_", 1)[0]
        return stem if VIMEO_ID_RE.match(stem) else ""
    if not host_matches(host, VIMEO_HOSTS):
        return ""
    if host_matches(host, ("player.vimeo.com",)):
        if len(segments) >= 2 and segments[0] == "video" and VIMEO_ID_RE.match(segments[1]):
            return segments[1]
        return ""
    for seg in segments:
        if VIMEO_ID_RE.match(seg):
            return seg
    return ""


def extract_video_id(url: object, platform: str = YOUTUBE) -> str:
    parsed = _parse(normalize_url(url))
    if parsed is None:
        return ""
    if platform == YOUTUBE:
        return _youtube_id(parsed)
    if platform == VIMEO:
        return _vimeo_id(parsed)
    return ""


def detect_video(url: object) -> Tuple[str, str]:
    """Return (platform, video_id) for the first platform that recognises the URL."""
    for platform in PLATFORMS:
        vid = extract_video_id(url, platform)
        if vid:
            return platform, vid
    return "", ""


def is_video_url(url: object) -> bool:
    return host_matches(extract_host(url), VIDEO_HOSTS)


# ============================== Builders =============================

def watch_url(video_id: str, platform: str = YOUTUBE) -> str:
    if platform == YOUTUBE and YOUTUBE_ID_RE.match(video_id or ""):
        return f"https://www.youtube.com/watch?v={video_id}"
    if platform == VIMEO and VIMEO_ID_RE.match(video_id or ""):
        return f"https://vimeo.com/{video_id}"
    return ""


def video_thumbnail(video_id: str, platform: str = YOUTUBE, quality: str = DEFAULT_THUMBNAIL_QUALITY) -> str:
    if platform == YOUTUBE and YOUTUBE_ID_RE.match(video_id or ""):
        if quality not in THUMBNAIL_QUALITIES:
            quality = DEFAULT_THUMBNAIL_QUALITY
        return f"https://i.ytimg.com/vi/{video_id}/{quality}.jpg"
    if platform == VIMEO and VIMEO_ID_RE.match(video_id or ""):
        return f"https://vumbnail.com/{video_id}.jpg"
    return ""


def oembed_url(video_id: str, platform: str = YOUTUBE) -> str:
    target = watch_url(video_id, platform)
    if not target:
        return ""
    if platform == YOUTUBE:
        return f"https://www.youtube.com/oembed?url={quote(target, safe='')}&format=json"
    return f"https://vimeo.com/api/oembed.json?url={quote(target, safe='')}"


def youtube_search_url(query: str) -> str:
    return f"https://www.youtube.com/results?hl=en&gl=US&search_query={quote_plus(query or '')}"


def web_search_url(engine: str, query: str) -> str:
    q = quote_plus(query or "")
    if engine == "duckduckgo":
        return f"https://html.duckduckgo.com/html/?q={q}"
    if engine == "bing":
        return f"https://www.bing.com/search?q={q}&count=10"
    return ""


def screenshot_thumbnail(case_url: str) -> str:
    link = clean_case_url(case_url)
    if not link:
        return ""
    return f"https://image.thum.io/get/width/1200/noanimate/{quote(link, safe='')}"


# ============================== Redirect wrappers ====================

def _decode_bing_payload(payload: str) -> str:
    if payload.startswith("a1"):
        payload = payload[2:]
    payload = payload.replace("-", "+").replace("_", "/")
    payload += "=" * ((4 - len(payload) % 4) % 4)
    try:
        decoded = base64.b64decode(payload, validate=False).decode("utf-8").strip()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return ""
    return decoded


def decode_redirect_wrapper(url: object) -> str:
    parsed = _parse(normalize_url(url))
    if parsed is None:
        return ""
    host = (parsed.hostname or "").lower()
    params = parse_qs(parsed.query)
    target = ""
    if host_matches(host, ("bing.com",)) and parsed.path.startswith("/ck/"):
        target = _decode_bing_payload((params.get("u") or [""])[0])
    elif host_matches(host, ("duckduckgo.com",)) and params.get("uddg"):
        target = unquote(params["uddg"][0])
    elif host_matches(host, ("google.com",)) and parsed.path == "/url":
        target = (params.get("q") or params.get("url") or [""])[0]
    if not target:
        return ""
    return normalize_url(target)


def is_redirect_wrapper(url: object) -> bool:
    parsed = _parse(normalize_url(url))
    if parsed is None:
        return False
    host = (parsed.hostname or "").lower()
    if host_matches(host, ("bing.com",)) and parsed.path.startswith("/ck/"):
        return True
    if host_matches(host, ("duckduckgo.com",)) and parsed.path.startswith("/l/"):
        return True
    return host_matches(host, ("google.com",)) and parsed.path == "/url"


def clean_case_url(raw: object) -> str:
    url = normalize_url(raw)
    if not url:
        return ""
    url = decode_redirect_wrapper(url) or url
    parsed = _parse(url)
    if parsed is None:
        return ""
    scheme = "https" if parsed.scheme == "http" else parsed.scheme
    return urlunparse((scheme, parsed.netloc, parsed.path, parsed.params, parsed.query, ""))


def found_url(raw: object) -> str:
    """Normalise an href scraped from a results page."""
    url = normalize_url(raw)
    if not url:
        return ""
    return decode_redirect_wrapper(url) or url


# ============================== Thumbnails ===========================

def _thumio_target(parsed) -> str:
    idx = parsed.path.find(THUMIO_MARKER)
    if idx < 0:
        return ""
    target = parsed.path[idx + len(THUMIO_MARKER):]
    for _ in range(6):
        decoded = unquote(target)
        if decoded == target:
            break
        target = decoded
    return target


def is_blocked_screenshot(url: object) -> bool:
    parsed = _parse(normalize_url(url))
    if parsed is None or not host_matches(parsed.hostname or "", ("image.thum.io",)):
        return False
    target = _thumio_target(parsed)
    if not target:
        return False
    return host_matches(extract_host(target), BLOCKED_SCREENSHOT_HOSTS)


def is_placeholder_thumbnail(url: object) -> bool:
    text = normalize_url(url)
    if not text:
        return False
    if any(rx.match(text) for rx in PLACEHOLDER_THUMBNAILS):
        return True
    return is_blocked_screenshot(text)


def looks_like_image_url(url: object) -> bool:
    parsed = _parse(normalize_url(url))
    if parsed is None:
        return False
    host = (parsed.hostname or "").lower()
    path = (parsed.path or "").lower()
    if host_matches(host, ("image.thum.io",)) and is_blocked_screenshot(url):
        return False
    if IMAGE_EXT_RE.search(path):
        return True
    if host_matches(host, YOUTUBE_IMAGE_HOSTS) and YTIMG_FILE_RE.search(path):
        return True
    if any(hint in host for hint in IMAGE_CDN_HINTS):
        return True
    return "adsoftheworld.com" in host and "/thumbnail_" in path


def next_thumbnail_fallback(url: object) -> str:
    text = normalize_url(url)
    parsed = _parse(text)
    if parsed is None or not host_matches(parsed.hostname or "", YOUTUBE_IMAGE_HOSTS):
        return ""
    for current, lower in zip(THUMBNAIL_QUALITIES, THUMBNAIL_QUALITIES[1:]):
        marker = f"/{current}.jpg"
        if parsed.path.endswith(marker):
            return text.replace(marker, f"/{lower}.jpg", 1)
    return ""


def first_video(urls: Iterable[object]) -> Tuple[str, str]:
    """Return (platform, id) for the first URL carrying a recognisable video ID."""
    for url in urls:
        platform, vid = detect_video(url)
        if vid:
            return platform, vid
    return "", ""


def thumbnail_for_link(*urls: object, quality: str = DEFAULT_THUMBNAIL_QUALITY) -> str:
    platform, vid = first_video(urls)
    if not vid:
        return ""
    return video_thumbnail(vid, platform, quality)
