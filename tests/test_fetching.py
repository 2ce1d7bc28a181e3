import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from types import SimpleNamespace

import pytest
import requests

from caselink import fetching
from caselink.fetching import HttpClient


class FakeRaw:
    def __init__(self, body: bytes) -> None:
        self.body = body
        self.pos = 0

    def read1(self, amt: int, decode_content: bool = True) -> bytes:
        chunk = self.body[self.pos : self.pos + amt]
        self.pos += len(chunk)
        return chunk


class FakeResponse:
    def __init__(self, status: int, headers=None, body: bytes = b"", encoding: str = "utf-8") -> None:
        self.status_code = status
        self.headers = headers or {}
        self.raw = FakeRaw(body)
        self.encoding = encoding

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


class FakeSession:
    def __init__(self, script) -> None:
        self.script = script
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        step = self.script(url)
        if isinstance(step, Exception):
            raise step
        return step


def _client(script, **kwargs) -> tuple:
    client = HttpClient(**kwargs)
    session = FakeSession(script)
    client._local.session = session
    return client, session


def test_get_follows_relative_redirects() -> None:
    def script(url):
        if url == "https://example.com/old":
            return FakeResponse(301, {"Location": "/new"})
        return FakeResponse(200, {"Content-Type": "text/html"}, b"<title>ok</title>")

    client, session = _client(script)
    res = client.get("https://example.com/old")
    assert res.ok
    assert res.url == "https://example.com/new"
    assert res.text == "<title>ok</title>"
    assert all(call[2]["allow_redirects"] is False for call in session.calls)


def test_redirect_loop_and_hop_limit_fail_without_raising() -> None:
    def loop(url):
        target = "/b" if url.endswith("/a") else "/a"
        return FakeResponse(302, {"Location": target})

    client, _ = _client(loop)
    res = client.get("https://example.com/a")
    assert not res.ok and res.error == "redirect_loop"

    def chain(url):
        n = int(url.rsplit("/", 1)[-1])
        return FakeResponse(302, {"Location": f"/{n + 1}"})

    client, session = _client(chain, max_redirects=5)
    res = client.head("https://example.com/0")
    assert res.status == 0 and res.error == "too_many_redirects"
    assert len(session.calls) == 6


def test_transport_errors_become_results() -> None:
    client, _ = _client(lambda url: requests.Timeout("slow"))
    res = client.get("https://example.com/slow")
    assert res.status == 0
    assert res.error == "Timeout"
    assert client.get("not a url").error == "invalid_url"


def test_body_is_capped() -> None:
    client, _ = _client(lambda url: FakeResponse(200, {}, b"x" * 50_000), max_bytes=1000)
    assert len(client.get("https://example.com/big").text) == 1000
    assert client.head("https://example.com/big").text == ""


def test_unknown_encoding_falls_back_to_utf8() -> None:
    client, _ = _client(lambda url: FakeResponse(200, {}, "café".encode("utf-8"), encoding="x-unknown"))
    assert client.get("https://example.com/").text == "café"


class TrickleHandler(BaseHTTPRequestHandler):
    """Sends a 40-byte body one byte every 0.1 s."""

    def do_GET(self) -> None:
        self.send_response(200)
        self.send_header("Content-Type", "text/html")
        self.send_header("Content-Length", "40")
        self.end_headers()
        try:
            for _ in range(40):
                self.wfile.write(b"x")
                self.wfile.flush()
                time.sleep(0.1)
        except (BrokenPipeError, ConnectionResetError):
            pass

    def log_message(self, format, *args) -> None:
        pass


@pytest.fixture
def trickle_url():
    server = ThreadingHTTPServer(("127.0.0.1", 0), TrickleHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}/slow"
    finally:
        server.shutdown()
        server.server_close()


def test_slow_body_is_cut_off_at_the_deadline(trickle_url, monkeypatch) -> None:
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(name, raising=False)
    client = HttpClient(timeout=0.5)
    started = time.monotonic()
    res = client.get(trickle_url)
    elapsed = time.monotonic() - started
    assert elapsed < 2.0
    assert res.error == "timeout"
    assert res.status == 0 and not res.ok


def test_expired_deadline_stops_redirect_chain(monkeypatch) -> None:
    clock = iter([0.0, 0.0, 0.6, 1.2, 1.8])
    monkeypatch.setattr(fetching, "time", SimpleNamespace(monotonic=lambda: next(clock)))
    client, session = _client(lambda url: FakeResponse(302, {"Location": url + "x"}), timeout=1.0)
    res = client.head("https://example.com/a")
    assert res.error == "timeout"
    assert len(session.calls) == 2
    assert session.calls[1][2]["timeout"] == pytest.approx(0.4)
