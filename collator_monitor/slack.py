from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from collator_monitor.errors import NotifierDeliveryError
from collator_monitor.report import REPORT_HEADER, Report


logger = structlog.get_logger(__name__)

SLACK_WEBHOOK_BASE_URL = "https://hooks.slack.com/services"
# Block Kit limits: section text length, header text length, blocks per message.
SLACK_MAX_SECTION_LEN = 3000
SLACK_MAX_HEADER_LEN = 150
SLACK_MAX_BLOCKS = 50


@dataclass(frozen=True)
class SlackConfig:
    webhook_token: str
    base_url: str = SLACK_WEBHOOK_BASE_URL
    timeout_seconds: float = 30.0

    @property
    def webhook_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.webhook_token.strip('/')}"


def split_section_text(text: str, *, max_len: int = SLACK_MAX_SECTION_LEN) -> list[str]:
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        # Prefer breaking between addresses, then at a newline.
        cut = s.rfind(", ", 0, max_len)
        if cut > 0:
            cut += 1
        else:
            cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        parts.append(s[:cut].rstrip())
        s = s[cut:].lstrip()
    return parts


def header_block(text: str) -> dict[str, Any]:
    return {"type": "header", "text": {"type": "plain_text", "text": text[:SLACK_MAX_HEADER_LEN]}}


def section_block(text: str) -> dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def build_slack_blocks(report: Report) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    if report.header:
        blocks.append(header_block(report.header))
    for section in report.sections:
        blocks.extend(section_block(part) for part in split_section_text(section))
    return blocks


def chunk_blocks(blocks: list[dict[str, Any]], *, max_blocks: int = SLACK_MAX_BLOCKS) -> list[list[dict[str, Any]]]:
    max_blocks = max(1, int(max_blocks))
    return [blocks[i : i + max_blocks] for i in range(0, len(blocks), max_blocks)] or [[]]


def _redact(message: str, config: SlackConfig) -> str:
    if config.webhook_token:
        message = message.replace(config.webhook_token, "<redacted>")
    return message


async def send_slack_message(
    client: httpx.AsyncClient, config: SlackConfig, blocks: list[dict[str, Any]], text: str
) -> None:
    payload = {"text": text, "blocks": blocks}
    try:
        resp = await client.post(config.webhook_url, json=payload, timeout=config.timeout_seconds)
    except httpx.HTTPError as e:
        raise NotifierDeliveryError(_redact(f"{type(e).__name__}: {e}", config)) from e
    if resp.status_code != 200:
        body = resp.text[:200]
        raise NotifierDeliveryError(_redact(f"Slack webhook returned {resp.status_code}: {body}", config))


async def send_report(client: httpx.AsyncClient, config: SlackConfig, report: Report) -> bool:
    """
    Deliver ``report`` to Slack, splitting it over several messages if needed.

    Delivery failures are logged and reported through the return value; they
    are never raised.
    """
    fallback = report.header or REPORT_HEADER
    ok_all = True
    for chunk in chunk_blocks(build_slack_blocks(report)):
        try:
            await send_slack_message(client, config, chunk, fallback)
        except NotifierDeliveryError as e:
            logger.error("Slack notification failed", error=str(e))
            ok_all = False
    if ok_all:
        logger.info("Slack notification sent", sections=len(report.sections))
    return ok_all
