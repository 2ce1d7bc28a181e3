"""HTML scraping helpers for search-result pages and case-study pages."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from bs4 import BeautifulSoup

from .urls import absolute_url, found_url, is_placeholder_thumbnail, looks_like_image_url

# (tag, attribute filter, attribute holding the URL), in priority order.
PAGE_IMAGE_SOURCES = (
    ("meta", {"property": "og:image"}, "content"),
    ("meta", {"name": "twitter:image"}, "content"),
    ("meta", {"property": "twitter:image"}, "content"),
    ("meta", {"itemprop": "image"}, "content"),
    ("link", {"rel": "image_src"}, "href"),
    ("meta", {"name": "thumbnail"}, "content"),
)
DESCRIPTION_NAME_RE = re.compile(r"^description$", re.I)
SKIPPED_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:")
YT_INITIAL_DATA_RE = re.compile(r"var ytInitialData\s*=\s*(\{.*?\});\s*</script>", re.S)
YT_RESULT_RE = re.compile(r'"videoId":"([A-Za-z0-9_-]{11})".{0,500}?"title":\{"runs":\[\{"text":"((?:[^"\\]|\\.)*)"', re.S)
WS_RE = re.compile(r"\s+")
PAGE_SCAN_CHARS = 300_000


def make_soup(html_text: str) -> BeautifulSoup:
    return BeautifulSoup((html_text or "")[:PAGE_SCAN_CHARS], "html.parser")


def node_text(node: Any) -> str:
    if node is None:
        return ""
    return WS_RE.sub(" ", node.get_text(" ")).strip()


def extract_title(html_text: str) -> str:
    return node_text(make_soup(html_text).title)


def extract_meta_description(html_text: str) -> str:
    tag = make_soup(html_text).find("meta", attrs={"name": DESCRIPTION_NAME_RE})
    if tag is None:
        return ""
    return str(tag.get("content") or "").strip()


def extract_page_images(html_text: str, base_url: str) -> List[str]:
    """Meta-declared preview images, in priority order, deduplicated."""
    soup = make_soup(html_text)
    out: List[str] = []
    for name, attrs, key in PAGE_IMAGE_SOURCES:
        for tag in soup.find_all(name, attrs=attrs):
            img = absolute_url(tag.get(key), base_url)
            if not img or img in out:
                continue
            if is_placeholder_thumbnail(img) or not looks_like_image_url(img):
                continue
            out.append(img)
    return out


def extract_anchors(html_text: str, base_url: str) -> List[Tuple[str, str]]:
    out: List[Tuple[str, str]] = []
    seen: set[str] = set()
    for tag in make_soup(html_text).find_all("a", href=True):
        href = str(tag["href"]).strip()
        if href.startswith(SKIPPED_HREF_PREFIXES):
            continue
        url = absolute_url(href, base_url)
        if not url or url in seen:
            continue
        seen.add(url)
        out.append((url, node_text(tag)))
    return out


def _search_results(links: Iterable[Any], limit: int) -> List[Tuple[str, str]]:
    out: List[Tuple[str, str]] = []
    for tag in links:
        if tag is None:
            continue
        url = found_url(tag.get("href"))
        if not url:
            continue
        out.append((url, node_text(tag)))
        if len(out) >= limit:
            break
    return out


def parse_duckduckgo_results(html_text: str, limit: int = 16) -> List[Tuple[str, str]]:
    soup = BeautifulSoup(html_text or "", "html.parser")
    return _search_results(soup.find_all("a", class_="result__a", href=True), limit)


def parse_bing_results(html_text: str, limit: int = 16) -> List[Tuple[str, str]]:
    soup = BeautifulSoup(html_text or "", "html.parser")
    links = []
    for item in soup.find_all("li", class_="b_algo"):
        heading = item.find("h2")
        links.append(heading.find("a", href=True) if heading is not None else None)
    return _search_results(links, limit)


def _runs_text(node: Any) -> str:
    if not isinstance(node, dict):
        return ""
    runs = node.get("runs")
    if isinstance(runs, list):
        return "".join(str(r.get("text") or "") for r in runs if isinstance(r, dict))
    return str(node.get("simpleText") or "")


def _walk_video_renderers(node: Any) -> Iterator[Dict[str, Any]]:
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, list):
            stack.extend(reversed(current))
        elif isinstance(current, dict):
            renderer = current.get("videoRenderer")
            if isinstance(renderer, dict) and renderer.get("videoId"):
                yield renderer
            stack.extend(reversed(list(current.values())))


def _decode_json_string(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"')
    except ValueError:
        return raw


def parse_youtube_results(html_text: str, limit: int = 30) -> List[Dict[str, str]]:
    """Extract {videoId, title, channel} from a YouTube results page.

    Walks the embedded ytInitialData when it parses, otherwise falls back to a
    regex over the raw page.
    """
    out: List[Dict[str, str]] = []
    seen: set[str] = set()
    data: Optional[Any] = None
    m = YT_INITIAL_DATA_RE.search(html_text or "")
    if m:
        try:
            data = json.loads(m.group(1))
        except ValueError:
            data = None
    if data is not None:
        for renderer in _walk_video_renderers(data):
            vid = str(renderer.get("videoId"))
            if vid in seen:
                continue
            seen.add(vid)
            channel = _runs_text(renderer.get("ownerText")) or _runs_text(renderer.get("longBylineText"))
            out.append({"videoId": vid, "title": _runs_text(renderer.get("title")), "channel": channel})
            if len(out) >= limit:
                return out
    if out:
        return out
    for m in YT_RESULT_RE.finditer(html_text or ""):
        vid = m.group(1)
        if vid in seen:
            continue
        seen.add(vid)
        out.append({"videoId": vid, "title": _decode_json_string(m.group(2)), "channel": ""})
        if len(out) >= limit:
            break
    return out
