from __future__ import annotations

from datetime import datetime, timezone

import httpx
import structlog
from pydantic import AwareDatetime, BaseModel, ConfigDict, ValidationError

from collator_monitor.errors import IndexerQueryError


logger = structlog.get_logger(__name__)

DEFAULT_BLOCK_QUERY_LIMIT = 7200


class Block(BaseModel):
    model_config = ConfigDict(frozen=True)

    height: int
    timestamp: AwareDatetime
    validator: str


class BlocksQueryResult(BaseModel):
    blocks: list[Block]


def format_timestamp(value: datetime) -> str:
    """
    Fixed-width UTC ISO-8601 with milliseconds, e.g. ``2024-01-31T08:00:00.000Z``.
    The indexer compares this against stored timestamps.
    """
    if value.tzinfo is None:
        raise ValueError("Timestamp must be timezone-aware")
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def build_blocks_query(since: datetime, limit: int = DEFAULT_BLOCK_QUERY_LIMIT) -> str:
    return (
        "{\n"
        "    blocks(\n"
        f"        limit: {int(limit)},\n"
        "        orderBy: timestamp_DESC,\n"
        f'        where: {{ timestamp_gte: "{format_timestamp(since)}" }}\n'
        "    ) {\n"
        "        height\n"
        "        timestamp\n"
        "        validator\n"
        "    }\n"
        "}\n"
    )


async def fetch_blocks(
    client: httpx.AsyncClient,
    gql_url: str,
    since: datetime,
    *,
    limit: int = DEFAULT_BLOCK_QUERY_LIMIT,
    timeout: float = 30.0,
) -> list[Block]:
    """
    Blocks with ``timestamp >= since``, newest first, capped at ``limit``.

    Only one page is requested. If the window holds more than ``limit`` blocks
    the oldest ones are dropped.
    """
    payload = {"query": build_blocks_query(since, limit)}
    try:
        resp = await client.post(gql_url, json=payload, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPError as exc:
        raise IndexerQueryError(f"Indexer request to {gql_url} failed: {type(exc).__name__}: {exc}") from exc
    except ValueError as exc:
        raise IndexerQueryError(f"Indexer at {gql_url} returned invalid JSON") from exc

    if not isinstance(data, dict):
        raise IndexerQueryError("Unexpected indexer response (not a JSON object)")
    if data.get("errors"):
        raise IndexerQueryError(f"Indexer returned errors: {data['errors']}")

    try:
        result = BlocksQueryResult.model_validate(data.get("data"))
    except ValidationError as exc:
        raise IndexerQueryError(f"Malformed blocks response: {exc}") from exc

    if len(result.blocks) >= limit:
        logger.warning(
            "Block query hit page limit; oldest blocks in the window are not counted",
            gql_url=gql_url,
            limit=limit,
        )
    return result.blocks
