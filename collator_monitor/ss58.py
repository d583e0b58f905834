from __future__ import annotations

import hashlib

import base58

from collator_monitor.errors import InvalidAddressError


SS58_CHECKSUM_PREFIX = b"SS58PRE"
MAX_SS58_PREFIX = 16383
# Prefixes 46 and 47 are reserved by the SS58 registry.
RESERVED_SS58_PREFIXES = frozenset({46, 47})

# Payload length -> checksum length, matching the Substrate address format.
PAYLOAD_CHECKSUM_LENGTHS = {1: 1, 2: 1, 4: 1, 8: 1, 32: 2, 33: 2}


def _checksum(data: bytes) -> bytes:
    return hashlib.blake2b(SS58_CHECKSUM_PREFIX + data, digest_size=64).digest()


def _prefix_bytes(ss58_prefix: int) -> bytes:
    if isinstance(ss58_prefix, bool) or not isinstance(ss58_prefix, int):
        raise InvalidAddressError(f"SS58 prefix must be an int, got {type(ss58_prefix).__name__}")
    if ss58_prefix < 0 or ss58_prefix > MAX_SS58_PREFIX:
        raise InvalidAddressError(f"SS58 prefix out of range: {ss58_prefix}")
    if ss58_prefix in RESERVED_SS58_PREFIXES:
        raise InvalidAddressError(f"Reserved SS58 prefix: {ss58_prefix}")
    if ss58_prefix < 64:
        return bytes([ss58_prefix])
    first = ((ss58_prefix & 0b0000_0000_1111_1100) >> 2) | 0b0100_0000
    second = (ss58_prefix >> 8) | ((ss58_prefix & 0b0000_0000_0000_0011) << 6)
    return bytes([first, second])


def encode_address(public_key: bytes, ss58_prefix: int) -> str:
    """
    Encode a raw public key as an SS58 address under ``ss58_prefix``.
    """
    key = bytes(public_key)
    checksum_len = PAYLOAD_CHECKSUM_LENGTHS.get(len(key))
    if checksum_len is None:
        raise InvalidAddressError(f"Unsupported public key length: {len(key)} bytes")
    data = _prefix_bytes(ss58_prefix) + key
    return base58.b58encode(data + _checksum(data)[:checksum_len]).decode("ascii")


def decode_address(address: str) -> tuple[bytes, int]:
    """
    Decode an SS58 address into ``(public_key, ss58_prefix)``.
    Raises InvalidAddressError on bad characters, length, prefix or checksum.
    """
    try:
        raw = base58.b58decode(str(address).strip())
    except ValueError as exc:
        raise InvalidAddressError(f"Not a base58 string: {address!r}") from exc
    if not raw:
        raise InvalidAddressError("Empty address")

    if raw[0] < 64:
        prefix_len = 1
        ss58_prefix = raw[0]
    elif raw[0] < 128:
        if len(raw) < 2:
            raise InvalidAddressError(f"Truncated address: {address!r}")
        prefix_len = 2
        ss58_prefix = ((raw[0] & 0b0011_1111) << 2) | (raw[1] >> 6) | ((raw[1] & 0b0011_1111) << 8)
        if ss58_prefix < 64:
            raise InvalidAddressError(f"Non-canonical two-byte SS58 prefix in {address!r}")
    else:
        raise InvalidAddressError(f"Reserved SS58 prefix byte in {address!r}")
    if ss58_prefix in RESERVED_SS58_PREFIXES:
        raise InvalidAddressError(f"Reserved SS58 prefix {ss58_prefix} in {address!r}")

    body = raw[prefix_len:]
    for key_len, checksum_len in PAYLOAD_CHECKSUM_LENGTHS.items():
        if len(body) == key_len + checksum_len:
            break
    else:
        raise InvalidAddressError(f"Unexpected address length: {address!r}")

    data = raw[: prefix_len + key_len]
    if raw[prefix_len + key_len :] != _checksum(data)[:checksum_len]:
        raise InvalidAddressError(f"Bad checksum: {address!r}")
    return bytes(body[:key_len]), ss58_prefix


def public_key_from_hex(value: str) -> bytes:
    s = str(value).strip()
    if s[:2].lower() == "0x":
        s = s[2:]
    try:
        return bytes.fromhex(s)
    except ValueError as exc:
        raise InvalidAddressError(f"Not a hex string: {value!r}") from exc


def _looks_like_hex(value: str) -> bool:
    s = value.strip()
    if s[:2].lower() == "0x":
        return True
    # A 32-byte key in bare hex; SS58 strings never reach 64 chars of [0-9a-f] only.
    return len(s) == 64 and all(c in "0123456789abcdefABCDEF" for c in s)


def normalize_address(value: bytes | str, ss58_prefix: int) -> str:
    """
    Canonical SS58 form of ``value`` under ``ss58_prefix``.

    Accepts raw key bytes, a hex string (``0x`` optional, any case) or an SS58
    address encoded under any prefix. All representations of the same key give
    the same string.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return encode_address(bytes(value), ss58_prefix)
    if not isinstance(value, str) or not value.strip():
        raise InvalidAddressError(f"Cannot normalize address {value!r}")
    if _looks_like_hex(value):
        return encode_address(public_key_from_hex(value), ss58_prefix)
    public_key, _ = decode_address(value)
    return encode_address(public_key, ss58_prefix)
