from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any

import structlog
import websockets
from websockets.exceptions import WebSocketException

from collator_monitor.config import ChainConfig
from collator_monitor.errors import InvalidAddressError, NodeUnavailableError
from collator_monitor.ss58 import encode_address


logger = structlog.get_logger(__name__)

# twox128("Session") ++ twox128("Validators")
SESSION_VALIDATORS_STORAGE_KEY = "0xcec5070d609dd3497f72bde07fc96ba088dcde934c658227ee1dfafcd6e16903"
ACCOUNT_ID_LENGTH = 32


def decode_compact(data: bytes, offset: int = 0) -> tuple[int, int]:
    """
    Decode a SCALE compact integer at ``offset``.
    Returns ``(value, next_offset)``.
    """
    if offset >= len(data):
        raise ValueError("Compact integer past end of data")
    mode = data[offset] & 0b11
    if mode == 0b00:
        return data[offset] >> 2, offset + 1
    if mode == 0b01:
        if offset + 2 > len(data):
            raise ValueError("Truncated two-byte compact integer")
        return int.from_bytes(data[offset : offset + 2], "little") >> 2, offset + 2
    if mode == 0b10:
        if offset + 4 > len(data):
            raise ValueError("Truncated four-byte compact integer")
        return int.from_bytes(data[offset : offset + 4], "little") >> 2, offset + 4
    length = (data[offset] >> 2) + 4
    start = offset + 1
    if start + length > len(data):
        raise ValueError("Truncated big compact integer")
    return int.from_bytes(data[start : start + length], "little"), start + length


def decode_account_ids(data: bytes) -> list[bytes]:
    """Decode a SCALE ``Vec<AccountId32>``."""
    count, offset = decode_compact(data)
    expected = offset + count * ACCOUNT_ID_LENGTH
    if expected != len(data):
        raise ValueError(f"Expected {expected} bytes for {count} account ids, got {len(data)}")
    return [data[offset + i * ACCOUNT_ID_LENGTH : offset + (i + 1) * ACCOUNT_ID_LENGTH] for i in range(count)]


class NodeClient:
    """Minimal JSON-RPC client for reading the session collator set from a node."""

    def __init__(self, ws_url: str, *, timeout: float = 30.0):
        self.ws_url = ws_url
        self.timeout = float(timeout)
        self._ids = itertools.count(1)

    async def connect(self) -> Any:
        try:
            return await websockets.connect(
                self.ws_url,
                open_timeout=self.timeout,
                close_timeout=self.timeout,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise NodeUnavailableError(f"Cannot connect to {self.ws_url}: {type(exc).__name__}: {exc}") from exc

    async def disconnect(self, connection: Any) -> None:
        try:
            await connection.close()
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            logger.warning("Node disconnect failed", ws_url=self.ws_url, error=str(exc))

    async def _exchange(self, connection: Any, request_id: int, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        await connection.send(json.dumps(payload))
        while True:
            raw = await connection.recv()
            try:
                message = json.loads(raw)
            except ValueError as exc:
                raise NodeUnavailableError(f"{method}: node sent invalid JSON") from exc
            # Skip subscription notifications and replies to other requests.
            if isinstance(message, dict) and message.get("id") == request_id:
                return message

    async def _rpc(self, connection: Any, method: str, params: list[Any]) -> Any:
        request_id = next(self._ids)
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        try:
            # One deadline for the whole exchange; a chatty node cannot keep it open.
            message = await asyncio.wait_for(
                self._exchange(connection, request_id, method, payload), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise NodeUnavailableError(f"{method} failed on {self.ws_url}: {type(exc).__name__}: {exc}") from exc

        if message.get("error") is not None:
            raise NodeUnavailableError(f"{method} returned error: {message['error']}")
        return message.get("result")

    async def query_collator_set(self, connection: Any, ss58_prefix: int) -> list[str]:
        """Current ``Session.Validators`` as SS58 addresses, in node order."""
        result = await self._rpc(connection, "state_getStorage", [SESSION_VALIDATORS_STORAGE_KEY])
        if result is None:
            return []
        if not isinstance(result, str) or not result.startswith("0x"):
            raise NodeUnavailableError(f"Unexpected storage value: {result!r}")
        try:
            account_ids = decode_account_ids(bytes.fromhex(result[2:]))
        except ValueError as exc:
            raise NodeUnavailableError(f"Malformed Session.Validators storage: {exc}") from exc
        try:
            return [encode_address(account_id, ss58_prefix) for account_id in account_ids]
        except InvalidAddressError as exc:
            raise NodeUnavailableError(f"Cannot encode collator address: {exc}") from exc


async def fetch_collators(chain: ChainConfig, *, timeout: float = 30.0) -> list[str]:
    client = NodeClient(chain.ws_url, timeout=timeout)
    connection = await client.connect()
    try:
        collators = await client.query_collator_set(connection, chain.ss58_prefix)
    finally:
        await client.disconnect(connection)
    logger.info("Fetched collator set", chain=chain.name, collators=len(collators))
    return collators
