from __future__ import annotations

import hashlib

import base58
import pytest

from collator_monitor.errors import InvalidAddressError
from collator_monitor.ss58 import decode_address, encode_address, normalize_address, public_key_from_hex


ALICE_HEX = "0xd43593c715fdd31c61141abd04a99fd6822c8558854ccde39a5684e7a56da27d"
ALICE_KEY = bytes.fromhex(ALICE_HEX[2:])


@pytest.mark.parametrize(
    ("prefix", "address"),
    [
        (42, "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"),
        (0, "15oF4uVJwmo4TdGW7VfQxNLavjCXviqxT9S1MgbjMNHr6Sp5"),
    ],
)
def test_encode_known_addresses(prefix: int, address: str) -> None:
    assert encode_address(ALICE_KEY, prefix) == address


@pytest.mark.parametrize("prefix", [0, 42, 56, 57, 63, 64, 255, 1000, 16383])
def test_decode_recovers_key_and_prefix(prefix: int) -> None:
    address = encode_address(ALICE_KEY, prefix)
    assert decode_address(address) == (ALICE_KEY, prefix)


def test_two_byte_prefix_differs_from_one_byte_prefix() -> None:
    assert encode_address(ALICE_KEY, 64) != encode_address(ALICE_KEY, 0)
    assert encode_address(ALICE_KEY, 56) != encode_address(ALICE_KEY, 57)


def test_all_representations_normalize_to_same_address() -> None:
    canonical = encode_address(ALICE_KEY, 56)
    representations = [
        ALICE_KEY,
        bytearray(ALICE_KEY),
        ALICE_HEX,
        ALICE_HEX.upper().replace("0X", "0x"),
        ALICE_HEX[2:],
        "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY",
        encode_address(ALICE_KEY, 57),
        f"  {canonical}  ",
    ]
    assert {normalize_address(r, 56) for r in representations} == {canonical}


def test_normalize_is_deterministic() -> None:
    assert normalize_address(ALICE_HEX, 57) == normalize_address(ALICE_HEX, 57)


@pytest.mark.parametrize("key", [b"", b"\x01" * 3, b"\x01" * 31, b"\x01" * 34])
def test_encode_rejects_bad_key_length(key: bytes) -> None:
    with pytest.raises(InvalidAddressError):
        encode_address(key, 42)


@pytest.mark.parametrize("prefix", [-1, 16384, True, 46, 47])
def test_encode_rejects_bad_prefix(prefix) -> None:
    with pytest.raises(InvalidAddressError):
        encode_address(ALICE_KEY, prefix)


def test_decode_rejects_bad_checksum() -> None:
    raw = bytearray(base58.b58decode(encode_address(ALICE_KEY, 42)))
    raw[-1] ^= 0xFF
    with pytest.raises(InvalidAddressError):
        decode_address(base58.b58encode(bytes(raw)).decode("ascii"))


@pytest.mark.parametrize("value", ["0OIl", "", "1"])
def test_decode_rejects_garbage(value: str) -> None:
    with pytest.raises(InvalidAddressError):
        decode_address(value)


def test_invalid_address_error_is_value_error() -> None:
    with pytest.raises(ValueError):
        public_key_from_hex("0xzz")


@pytest.mark.parametrize("value", ["0x123456", "0xnothex", "", None])
def test_normalize_rejects_malformed_input(value) -> None:
    with pytest.raises(InvalidAddressError):
        normalize_address(value, 56)


def _raw_address(prefix_bytes: bytes, key: bytes = ALICE_KEY) -> str:
    data = prefix_bytes + key
    checksum = hashlib.blake2b(b"SS58PRE" + data, digest_size=64).digest()[:2]
    return base58.b58encode(data + checksum).decode("ascii")


@pytest.mark.parametrize("prefix", [0, 42, 63])
def test_decode_rejects_two_byte_encoding_of_small_prefix(prefix: int) -> None:
    first = ((prefix & 0b1111_1100) >> 2) | 0b0100_0000
    second = (prefix >> 8) | ((prefix & 0b11) << 6)
    with pytest.raises(InvalidAddressError, match="Non-canonical"):
        decode_address(_raw_address(bytes([first, second])))


@pytest.mark.parametrize("prefix", [46, 47])
def test_decode_rejects_reserved_prefixes(prefix: int) -> None:
    with pytest.raises(InvalidAddressError, match="Reserved"):
        decode_address(_raw_address(bytes([prefix])))


def test_raw_address_helper_matches_encoder() -> None:
    assert _raw_address(bytes([42])) == encode_address(ALICE_KEY, 42)
