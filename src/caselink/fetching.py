from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import urljoin

import requests
from urllib3.exceptions import HTTPError as TransportError

from . import __version__
from .urls import normalize_url

DEFAULT_USER_AGENT = f"caselink/{__version__} (+metadata indexer)"
DEFAULT_TIMEOUT_SEC = 10.0
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_BYTES = 350_000
REDIRECT_STATUSES = {301, 302, 303, 307, 308}
READ_CHUNK = 16384
TIMEOUT_ERROR = "timeout"


def request_headers() -> Dict[str, str]:
    ua = os.getenv("CASELINK_USER_AGENT", DEFAULT_USER_AGENT)
    return {
        "User-Agent": ua,
        "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,image/*;q=0.8,*/*;q=0.5",
        "Accept-Language": "en-US,en;q=0.9",
    }


@dataclass
class FetchResult:
    url: str
    status: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    text: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return str(value).lower()
        return ""


class HttpClient:
    """Blocking HTTP client that never raises.

    Redirects are followed by hand so hop count and loops can be enforced.
    Each worker thread gets its own requests.Session.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        max_bytes: int = DEFAULT_MAX_BYTES,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.max_bytes = max_bytes
        self.headers = headers or request_headers()
        self._local = threading.local()

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers.update(self.headers)
            self._local.session = session
        return session

    def get(self, url: str, max_bytes: Optional[int] = None) -> FetchResult:
        return self.request("GET", url, max_bytes=max_bytes)

    def head(self, url: str) -> FetchResult:
        return self.request("HEAD", url, max_bytes=0)

    def request(self, method: str, url: str, max_bytes: Optional[int] = None) -> FetchResult:
        """One logical request, redirects included, bounded by ``timeout`` of wall-clock time."""
        current = normalize_url(url)
        if not current:
            return FetchResult(url=str(url or ""), error="invalid_url")
        limit = self.max_bytes if max_bytes is None else max_bytes
        deadline = time.monotonic() + self.timeout
        seen = {current}
        hops = 0
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return FetchResult(url=current, error=TIMEOUT_ERROR)
            try:
                resp = self._session().request(
                    method,
                    current,
                    allow_redirects=False,
                    stream=True,
                    timeout=remaining,
                )
            except requests.RequestException as exc:
                return FetchResult(url=current, error=type(exc).__name__)
            with resp:
                location = resp.headers.get("Location")
                if resp.status_code in REDIRECT_STATUSES and location:
                    target = normalize_url(urljoin(current, location))
                    if not target:
                        return FetchResult(url=current, status=0, error="bad_redirect")
                    if target in seen:
                        return FetchResult(url=target, error="redirect_loop")
                    hops += 1
                    if hops > self.max_redirects:
                        return FetchResult(url=target, error="too_many_redirects")
                    seen.add(target)
                    current = target
                    continue
                text = ""
                if method == "GET" and limit:
                    try:
                        body = self._read_body(resp, limit, deadline)
                    except (requests.RequestException, TransportError, OSError) as exc:
                        return FetchResult(url=current, error=type(exc).__name__)
                    if body is None:
                        return FetchResult(url=current, error=TIMEOUT_ERROR)
                    text = self._decode(resp, body)
                return FetchResult(
                    url=current,
                    status=resp.status_code,
                    headers=dict(resp.headers),
                    text=text,
                )

    @staticmethod
    def _read_body(resp: requests.Response, limit: int, deadline: float) -> Optional[bytes]:
        """Read at most ``limit`` bytes, or None once ``deadline`` passes.

        ``read1`` returns after a single socket read, so a server trickling
        bytes cannot hold the worker past the deadline.
        """
        chunks = []
        total = 0
        while total < limit:
            if time.monotonic() >= deadline:
                return None
            chunk = resp.raw.read1(min(READ_CHUNK, limit - total), decode_content=True)
            if not chunk:
                break
            chunks.append(chunk)
            total += len(chunk)
        return b"".join(chunks)[:limit]

    @staticmethod
    def _decode(resp: requests.Response, raw: bytes) -> str:
        try:
            return raw.decode(resp.encoding or "utf-8", errors="replace")
        except LookupError:
            return raw.decode("utf-8", errors="replace")
