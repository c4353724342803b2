from __future__ import annotations

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpx
import pytest

from uptime_monitor import db as dbm
from uptime_monitor.probe import check_monitor, expected_status_display, parse_headers, status_matches


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def _reply(self, status: int, body: str = "") -> None:
        data = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        if data:
            self.wfile.write(data)

    def do_GET(self) -> None:  # noqa: N802
        if self.path == "/ok":
            self._reply(200, "ok")
        elif self.path == "/no-content":
            self.send_response(204)
            self.end_headers()
        elif self.path == "/redirect":
            self.send_response(302)
            self.send_header("Location", "/ok")
            self.send_header("Content-Length", "0")
            self.end_headers()
        elif self.path == "/needs-header":
            self._reply(200 if self.headers.get("X-Probe") == "yes" else 400)
        elif self.path == "/trickle":
            self.send_response(200)
            self.send_header("Content-Length", "6")
            self.end_headers()
            for ch in b"abcdef":
                time.sleep(0.6)
                self.wfile.write(bytes([ch]))
                self.wfile.flush()
        elif self.path == "/slow":
            time.sleep(2.0)
            self._reply(200, "late")
        else:
            self._reply(404, "Not Found")

    def do_POST(self) -> None:  # noqa: N802
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length).decode("utf-8") if length else ""
        if self.path == "/echo-body":
            self._reply(201 if body == "ping" else 422)
        else:
            self._reply(404)


@pytest.fixture(scope="module")
def local_server_base_url() -> str:
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.daemon_threads = True
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


@pytest.mark.parametrize(
    ("expected", "code", "ok"),
    [(2, 204, True), (2, 404, False), (3, 302, True), (200, 200, True), (200, 201, False), (404, 404, True)],
)
def test_status_matches(expected: int, code: int, ok: bool) -> None:
    assert status_matches(expected, code) is ok


def test_expected_status_display() -> None:
    assert expected_status_display(2) == "2xx"
    assert expected_status_display(204) == "204"


def test_parse_headers_is_defensive() -> None:
    assert parse_headers('{"X-A": "1", "X-B": 2}') == {"X-A": "1", "X-B": "2"}
    assert parse_headers("{not json") == {}
    assert parse_headers("[1, 2]") == {}
    assert parse_headers("") == {}
    assert parse_headers(None) == {}


@pytest.mark.asyncio
async def test_status_class_rule_up_on_204(config, local_server_base_url: str) -> None:
    m = dbm.create_monitor(config, name="nc", url=f"{local_server_base_url}/no-content", expected_status=2, created_by=1)
    async with httpx.AsyncClient() as client:
        res = await check_monitor(config, client, m)
    assert res.status == "up"
    assert res.status_code == 204
    assert res.error is None
    assert res.previous_status == "unknown"
    assert res.response_time >= 0

    stored = dbm.get_monitor(config, monitor_id=m.id)
    assert stored is not None
    assert stored.status == "up"
    assert stored.last_checked_ts is not None
    rows = dbm.list_monitor_status_history(config, since_ts=0, until_ts=time.time() + 60, monitor_id=m.id)
    assert [(r["status"], r["status_code"]) for r in rows] == [("up", 204)]


@pytest.mark.asyncio
async def test_status_class_rule_down_on_404(config, local_server_base_url: str) -> None:
    m = dbm.create_monitor(config, name="missing", url=f"{local_server_base_url}/missing", expected_status=2, created_by=1)
    async with httpx.AsyncClient() as client:
        res = await check_monitor(config, client, m)
    assert res.status == "down"
    assert res.status_code == 404
    assert res.error == "Unexpected status code: 404, expected: 2xx"


@pytest.mark.asyncio
async def test_redirects_are_followed(config, local_server_base_url: str) -> None:
    m = dbm.create_monitor(config, name="r", url=f"{local_server_base_url}/redirect", expected_status=200, created_by=1)
    async with httpx.AsyncClient() as client:
        res = await check_monitor(config, client, m)
    assert res.status == "up"
    assert res.status_code == 200


@pytest.mark.asyncio
async def test_headers_are_sent_and_bad_headers_ignored(config, local_server_base_url: str) -> None:
    url = f"{local_server_base_url}/needs-header"
    with_header = dbm.create_monitor(config, name="h", url=url, headers={"X-Probe": "yes"}, created_by=1)
    broken = dbm.create_monitor(config, name="b", url=url, headers="{oops", created_by=1)
    async with httpx.AsyncClient() as client:
        ok = await check_monitor(config, client, with_header)
        bad = await check_monitor(config, client, broken)
    assert ok.status == "up"
    # Unparsable headers mean no extra headers, not a check failure.
    assert bad.status == "down"
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_body_sent_for_post(config, local_server_base_url: str) -> None:
    m = dbm.create_monitor(
        config, name="p", url=f"{local_server_base_url}/echo-body", method="post", body="ping", expected_status=201, created_by=1
    )
    async with httpx.AsyncClient() as client:
        res = await check_monitor(config, client, m)
    assert res.status == "up"
    assert res.status_code == 201


@pytest.mark.asyncio
async def test_timeout_is_reported_as_down(config, local_server_base_url: str) -> None:
    m = dbm.create_monitor(config, name="slow", url=f"{local_server_base_url}/slow", timeout_seconds=1, created_by=1)
    async with httpx.AsyncClient() as client:
        res = await check_monitor(config, client, m)
    assert res.status == "down"
    assert res.status_code is None
    assert res.error == "Request timed out after 1s"


@pytest.mark.asyncio
async def test_timeout_covers_slowly_streamed_body(config, local_server_base_url: str) -> None:
    m = dbm.create_monitor(config, name="trickle", url=f"{local_server_base_url}/trickle", timeout_seconds=1, created_by=1)
    started = time.perf_counter()
    async with httpx.AsyncClient() as client:
        res = await check_monitor(config, client, m)
    elapsed = time.perf_counter() - started

    assert elapsed < 2.0
    assert res.status == "down"
    assert res.status_code is None
    assert res.error == "Request timed out after 1s"


@pytest.mark.asyncio
async def test_connection_error_is_reported_as_down(config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    m = dbm.create_monitor(config, name="dead", url="http://dead.invalid/", created_by=1)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        res = await check_monitor(config, client, m)
    assert res.status == "down"
    assert res.error == "Connection refused"


@pytest.mark.asyncio
async def test_persistence_failures_do_not_escape(config, local_server_base_url: str, monkeypatch) -> None:
    m = dbm.create_monitor(config, name="ok", url=f"{local_server_base_url}/ok", created_by=1)

    def _boom(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(dbm, "update_monitor_status", _boom)
    async with httpx.AsyncClient() as client:
        res = await check_monitor(config, client, m)
    assert res.status == "up"

    # The history write is an independent step and still lands.
    rows = dbm.list_monitor_status_history(config, since_ts=0, until_ts=time.time() + 60, monitor_id=m.id)
    assert len(rows) == 1
    stored = dbm.get_monitor(config, monitor_id=m.id)
    assert stored is not None
    assert stored.status is None


@pytest.mark.asyncio
async def test_previous_status_carried(config, local_server_base_url: str) -> None:
    m = dbm.create_monitor(config, name="ok", url=f"{local_server_base_url}/ok", created_by=1)
    dbm.update_monitor_status(config, monitor_id=m.id, status="down", response_time=0)
    m = dbm.get_monitor(config, monitor_id=m.id)
    async with httpx.AsyncClient() as client:
        res = await check_monitor(config, client, m)
    assert res.previous_status == "down"
    assert res.status == "up"
