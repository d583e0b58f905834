"""Main entry point for the collator monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

import httpx
import structlog

from collator_monitor.analyzer import ClassificationResult, classify_collators
from collator_monitor.config import ChainConfig, MonitorConfig, load_config
from collator_monitor.errors import ConfigurationError
from collator_monitor.indexer_client import Block, fetch_blocks
from collator_monitor.node_client import fetch_collators
from collator_monitor.report import ChainOutcome, Report, build_report
from collator_monitor.slack import SlackConfig, send_report


logger = structlog.get_logger(__name__)

CollatorFetcher = Callable[..., Awaitable[list[str]]]
BlockFetcher = Callable[..., Awaitable[list[Block]]]
Notifier = Callable[[Report], Awaitable[bool]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, str(level).upper(), logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # The Slack token is part of the webhook URL that httpx logs at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def analyze_chain(
    chain: ChainConfig,
    config: MonitorConfig,
    http_client: httpx.AsyncClient,
    *,
    now: datetime,
    collator_fetcher: CollatorFetcher = fetch_collators,
    block_fetcher: BlockFetcher = fetch_blocks,
) -> ClassificationResult:
    window = timedelta(hours=config.window_hours)
    since = now - window
    tasks = [
        asyncio.ensure_future(collator_fetcher(chain, timeout=config.request_timeout_seconds)),
        asyncio.ensure_future(
            block_fetcher(
                http_client,
                chain.gql_url,
                since,
                limit=config.block_query_limit,
                timeout=config.request_timeout_seconds,
            )
        ),
    ]
    try:
        collators, blocks = await asyncio.gather(*tasks)
    except BaseException:
        # Both fetches belong to this chain; none may outlive its analysis.
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    result = classify_collators(
        chain.name,
        collators,
        blocks,
        chain.ss58_prefix,
        slow_percentage=config.slow_percentage,
        window=window,
        block_time=timedelta(seconds=config.block_time_seconds),
    )
    logger.info(
        "Chain analysis complete",
        chain=chain.name,
        collators=result.collator_count,
        blocks=result.block_count,
        inactive=list(result.inactive),
        slow=list(result.slow),
    )
    return result


async def run_pass(
    config: MonitorConfig,
    http_client: httpx.AsyncClient,
    *,
    now: datetime,
    collator_fetcher: CollatorFetcher = fetch_collators,
    block_fetcher: BlockFetcher = fetch_blocks,
) -> list[ChainOutcome]:
    """Analyze every configured chain; a failing chain never affects the others."""

    async def _safe_analyze(chain: ChainConfig) -> ChainOutcome:
        logger.info("Analyzing chain", chain=chain.name)
        try:
            result = await analyze_chain(
                chain,
                config,
                http_client,
                now=now,
                collator_fetcher=collator_fetcher,
                block_fetcher=block_fetcher,
            )
        except Exception as exc:
            err = f"{type(exc).__name__}: {exc}"
            logger.error("Chain analysis failed", chain=chain.name, error=err)
            return ChainOutcome(chain=chain.name, error=err)
        return ChainOutcome(chain=chain.name, result=result)

    return list(await asyncio.gather(*(_safe_analyze(chain) for chain in config.chains)))


async def run_once(
    config: MonitorConfig,
    http_client: httpx.AsyncClient,
    notifier: Notifier,
    *,
    now: datetime,
    collator_fetcher: CollatorFetcher = fetch_collators,
    block_fetcher: BlockFetcher = fetch_blocks,
) -> Report | None:
    """One pass: analyze all chains and notify only if something needs attention."""
    outcomes = await run_pass(
        config,
        http_client,
        now=now,
        collator_fetcher=collator_fetcher,
        block_fetcher=block_fetcher,
    )
    report = build_report(outcomes)
    if report is None:
        logger.info("All chains healthy; no notification sent")
        return None
    try:
        await notifier(report)
    except Exception as exc:
        logger.error("Notifier crashed", error=f"{type(exc).__name__}: {exc}")
    return report


async def run_loop(
    config: MonitorConfig,
    *,
    once: bool = False,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], datetime] = utc_now,
    http_client: httpx.AsyncClient | None = None,
    notifier: Notifier | None = None,
    collator_fetcher: CollatorFetcher = fetch_collators,
    block_fetcher: BlockFetcher = fetch_blocks,
) -> int:
    """
    Run a pass, sleep ``wait_time_days``, repeat. Never returns unless ``once``.
    """
    owns_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient()

    if notifier is None:
        slack_cfg = SlackConfig(
            webhook_token=config.slack_webhook_token,
            timeout_seconds=config.request_timeout_seconds,
        )

        async def notifier(report: Report) -> bool:
            return await send_report(http_client, slack_cfg, report)

    try:
        while True:
            await run_once(
                config,
                http_client,
                notifier,
                now=clock(),
                collator_fetcher=collator_fetcher,
                block_fetcher=block_fetcher,
            )
            if once:
                return 0
            logger.info("Sleeping until next pass", days=config.wait_time_days)
            await sleep(config.wait_time_seconds)
    finally:
        if owns_client:
            await http_client.aclose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Collator activity monitor")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config with the chain registry (default: bundled chains.yaml)",
    )
    parser.add_argument("--once", action="store_true", help="Run one analysis pass and exit")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (INFO, WARNING, ...); overrides LOG_LEVEL and the config file",
    )
    args = parser.parse_args()

    configure_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        logger.error("Refusing to start", error=str(exc))
        return 2

    if args.log_level is None:
        configure_logging(config.log_level)

    logger.info(
        "Collator monitor started",
        chains=[chain.name for chain in config.chains],
        slow_percentage=config.slow_percentage,
        wait_time_days=config.wait_time_days,
    )
    return asyncio.run(run_loop(config, once=bool(args.once)))


if __name__ == "__main__":
    raise SystemExit(main())
