"""Acceptance checks for ranked candidates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from .fetching import FetchResult, HttpClient
from .logger import RunLogger
from .models import Candidate, Outcome
from .scoring import DEFAULT_PREFERRED_HOSTS
from .urls import (
    SEARCH_ENGINE_HOSTS,
    VIDEO_HOSTS,
    extract_host,
    host_matches,
    is_placeholder_thumbnail,
    is_redirect_wrapper,
    normalize_url,
    oembed_url,
)

BAD_HOSTS = (
    "lovetheworkmore.com",
    "bing.com",
    "duckduckgo.com",
    "zhidao.baidu.com",
    "zhihu.com",
    "quizlet.com",
)
# (host, path fragment) pairs for listing pages that never hold a single case.
BAD_PATHS = (
    ("clios.com", "/winners-gallery/explore"),
    ("drive.google.com", "/drive/folders/"),
)
GET_RETRY_STATUSES = {0, 403, 404, 405}
SNIFF_MAX_BYTES = 4096
OEMBED_MAX_BYTES = 20_000
DEFAULT_LOOKAHEAD = 8


def is_known_bad_url(url: str, blocked_hosts: Sequence[str] = BAD_HOSTS) -> bool:
    """Unparseable, blocklisted, a search wrapper, a placeholder or a listing page."""
    text = normalize_url(url)
    if not text:
        return True
    host = extract_host(text)
    if host_matches(host, blocked_hosts) or host_matches(host, SEARCH_ENGINE_HOSTS):
        return True
    if is_redirect_wrapper(text) or is_placeholder_thumbnail(text):
        return True
    path = urlparse(text).path or ""
    return any(host_matches(host, (bad_host,)) and fragment in path for bad_host, fragment in BAD_PATHS)


@dataclass
class LiveResult:
    ok: bool
    status: int = 0
    url: str = ""
    error: str = ""


@dataclass
class Selection:
    outcome: str
    accepted: Optional[Candidate] = None
    best: Optional[Candidate] = None
    validated: int = 0


class Validator:
    def __init__(
        self,
        http: HttpClient,
        blocked_hosts: Sequence[str] = BAD_HOSTS,
        preferred_hosts: Sequence[str] = DEFAULT_PREFERRED_HOSTS,
        allow_any_domain: bool = True,
        lookahead: int = DEFAULT_LOOKAHEAD,
        logger: Optional[RunLogger] = None,
    ) -> None:
        self.http = http
        self.blocked_hosts = tuple(blocked_hosts)
        self.preferred_hosts = tuple(preferred_hosts)
        self.allow_any_domain = allow_any_domain
        self.lookahead = max(1, lookahead)
        self.logger = logger

    def is_known_bad(self, url: str) -> bool:
        return is_known_bad_url(url, self.blocked_hosts)

    def is_allowed_host(self, url: str) -> bool:
        if self.is_known_bad(url):
            return False
        if self.allow_any_domain:
            return True
        return host_matches(extract_host(url), self.preferred_hosts + VIDEO_HOSTS)

    def is_live(self, url: str) -> LiveResult:
        res = self.http.head(url)
        if not res.ok and (res.status in GET_RETRY_STATUSES or res.error):
            res = self.http.get(url, max_bytes=SNIFF_MAX_BYTES)
        return LiveResult(ok=res.ok, status=res.status, url=res.url, error=res.error)

    def is_available_media(self, video_id: str, platform: str) -> bool:
        endpoint = oembed_url(video_id, platform)
        if not endpoint:
            return False
        return self.http.get(endpoint, max_bytes=OEMBED_MAX_BYTES).ok

    def check_image(self, url: str) -> FetchResult:
        res = self.http.head(url)
        if not res.ok or not res.content_type:
            res = self.http.get(url, max_bytes=SNIFF_MAX_BYTES)
        return res

    def is_image_content(self, url: str) -> bool:
        res = self.check_image(url)
        return res.ok and res.content_type.startswith("image/")

    def select(self, ranked: Iterable[Candidate], threshold: Callable[[Candidate], float]) -> Selection:
        """Accept the first ranked candidate that passes every check.

        Host and threshold checks cost nothing and are not bounded. Only
        candidates that clear both reach the network, so ``lookahead`` caps
        the number of network validations (the top N that qualify), not the
        number of candidates walked.
        """
        examined = 0
        host_rejected = 0
        passed_threshold = False
        best: Optional[Candidate] = None
        validated = 0
        for cand in ranked:
            if validated >= self.lookahead:
                break
            examined += 1
            if not self.is_allowed_host(cand.url):
                host_rejected += 1
                continue
            if best is None:
                best = cand
            if cand.score < threshold(cand):
                continue
            passed_threshold = True
            validated += 1
            live = self.is_live(cand.url)
            if not live.ok:
                if self.logger:
                    self.logger.debug(f"[validate] dead {cand.url} status={live.status} {live.error}".rstrip())
                continue
            if cand.video_id and not self.is_available_media(cand.video_id, cand.platform):
                if self.logger:
                    self.logger.debug(f"[validate] unavailable {cand.platform}:{cand.video_id}")
                continue
            return Selection(Outcome.REPLACED, accepted=cand, best=cand, validated=validated)
        if examined == 0:
            outcome = Outcome.NO_CANDIDATES
        elif passed_threshold:
            outcome = Outcome.UNAVAILABLE
        elif host_rejected == examined:
            outcome = Outcome.REJECTED
        else:
            outcome = Outcome.LOW_SCORE
        return Selection(outcome, best=best, validated=validated)

    def select_image(self, urls: Iterable[str]) -> str:
        """First URL that is not a known placeholder and serves an image."""
        tried: List[str] = []
        for raw in urls:
            url = normalize_url(raw)
            if not url or url in tried:
                continue
            tried.append(url)
            if self.is_known_bad(url):
                continue
            if self.is_image_content(url):
                return url
            if len(tried) >= self.lookahead:
                break
        return ""
