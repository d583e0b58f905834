from __future__ import annotations

import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import httpx
import pytest

from collator_monitor.report import Report
from collator_monitor.slack import (
    SLACK_MAX_BLOCKS,
    SLACK_MAX_SECTION_LEN,
    SlackConfig,
    build_slack_blocks,
    chunk_blocks,
    send_report,
    split_section_text,
)


class _FakeSlackHandler(BaseHTTPRequestHandler):
    token = "T000/B000/secret"
    received: list[dict] = []

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def do_POST(self) -> None:  # noqa: N802
        n = int(self.headers.get("Content-Length") or "0")
        payload = json.loads(self.rfile.read(n).decode("utf-8"))
        if self.path != f"/services/{self.token}":
            body = b"invalid_token"
            self.send_response(403)
        else:
            type(self).received.append(payload)
            body = b"ok"
            self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


@pytest.fixture(scope="module")
def fake_slack_base_url() -> str:
    httpd = HTTPServer(("127.0.0.1", 0), _FakeSlackHandler)
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://{host}:{port}/services"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


def test_webhook_url() -> None:
    assert SlackConfig(webhook_token="T/B/X").webhook_url == "https://hooks.slack.com/services/T/B/X"


def test_split_section_text_breaks_between_addresses() -> None:
    addresses = ", ".join(f"6collator{i:04d}" for i in range(500))
    parts = split_section_text(addresses, max_len=400)
    assert len(parts) > 1
    assert all(0 < len(p) <= 400 for p in parts)
    rejoined = " ".join(parts).replace(",", "").split()
    assert rejoined == [f"6collator{i:04d}" for i in range(500)]


def test_split_section_text_default_limit() -> None:
    parts = split_section_text("a" * (SLACK_MAX_SECTION_LEN + 10))
    assert len(parts) == 2
    assert all(len(p) <= SLACK_MAX_SECTION_LEN for p in parts)


def test_build_slack_blocks_header_then_sections() -> None:
    blocks = build_slack_blocks(Report(header="Collator activity analysis", sections=("one", "two")))
    assert blocks[0] == {"type": "header", "text": {"type": "plain_text", "text": "Collator activity analysis"}}
    assert [b["text"]["text"] for b in blocks[1:]] == ["one", "two"]
    assert all(b["type"] == "section" and b["text"]["type"] == "mrkdwn" for b in blocks[1:])


def test_chunk_blocks() -> None:
    blocks = [{"type": "section"}] * (SLACK_MAX_BLOCKS * 2 + 1)
    chunks = chunk_blocks(blocks)
    assert [len(c) for c in chunks] == [SLACK_MAX_BLOCKS, SLACK_MAX_BLOCKS, 1]


@pytest.mark.asyncio
async def test_send_report_posts_blocks(fake_slack_base_url: str) -> None:
    _FakeSlackHandler.received.clear()
    cfg = SlackConfig(webhook_token=_FakeSlackHandler.token, base_url=fake_slack_base_url, timeout_seconds=5)
    report = Report(header="Collator activity analysis", sections=("Chain analysis for *pendulum:*",))
    async with httpx.AsyncClient() as client:
        ok = await send_report(client, cfg, report)
    assert ok is True
    assert len(_FakeSlackHandler.received) == 1
    payload = _FakeSlackHandler.received[0]
    assert payload["text"] == "Collator activity analysis"
    assert payload["blocks"][1]["text"]["text"] == "Chain analysis for *pendulum:*"


@pytest.mark.asyncio
async def test_send_report_failure_is_logged_not_raised(fake_slack_base_url: str) -> None:
    cfg = SlackConfig(webhook_token="wrong/token", base_url=fake_slack_base_url, timeout_seconds=5)
    async with httpx.AsyncClient() as client:
        ok = await send_report(client, cfg, Report(header=None, sections=("x",)))
    assert ok is False


@pytest.mark.asyncio
async def test_send_report_unreachable_webhook() -> None:
    cfg = SlackConfig(webhook_token="T/B/X", base_url="http://127.0.0.1:9/services", timeout_seconds=1)
    async with httpx.AsyncClient() as client:
        ok = await send_report(client, cfg, Report(header="h", sections=("x",)))
    assert ok is False
