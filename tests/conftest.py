from typing import Dict, List, Optional, Tuple

import pytest

from caselink.fetching import FetchResult
from caselink.logger import RunLogger


class FakeHttp:
    """Stand-in for HttpClient. Routes are exact URLs or prefixes ending in '*'."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], FetchResult] = {}
        self.calls: List[Tuple[str, str]] = []

    def add(
        self,
        url: str,
        status: int = 200,
        text: str = "",
        content_type: str = "text/html",
        methods: Tuple[str, ...] = ("GET", "HEAD"),
    ) -> None:
        headers = {"Content-Type": content_type} if content_type else {}
        for method in methods:
            self.routes[(method, url)] = FetchResult(url=url.rstrip("*"), status=status, headers=headers, text=text)

    def _match(self, method: str, url: str) -> Optional[FetchResult]:
        hit = self.routes.get((method, url))
        if hit is not None:
            return hit
        for (m, pattern), res in self.routes.items():
            if m == method and pattern.endswith("*") and url.startswith(pattern[:-1]):
                return res
        return None

    def request(self, method: str, url: str, max_bytes: Optional[int] = None) -> FetchResult:
        self.calls.append((method, url))
        res = self._match(method, url)
        if res is None:
            return FetchResult(url=url, status=404)
        text = res.text if method == "GET" else ""
        return FetchResult(url=url, status=res.status, headers=dict(res.headers), text=text, error=res.error)

    def get(self, url: str, max_bytes: Optional[int] = None) -> FetchResult:
        return self.request("GET", url, max_bytes)

    def head(self, url: str) -> FetchResult:
        return self.request("HEAD", url)

    def count(self, method: Optional[str] = None, prefix: str = "") -> int:
        return sum(1 for m, u in self.calls if (method is None or m == method) and u.startswith(prefix))


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def quiet_logger() -> RunLogger:
    return RunLogger(verbosity="quiet", also_stdout=False)
