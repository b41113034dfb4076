"""Chia address codec.

Addresses are bech32m ``<prefix>1<data><checksum>`` strings whose data part
carries a 32-byte puzzle hash as 52 five-bit words. Encoding and checksum
verification go through ``chia_wallet_sdk``; this module adds the network
prefix policy and the error classification the wallet reports.
"""

from __future__ import annotations

import importlib
import re
from dataclasses import dataclass
from typing import Any

from mojowallet.core.errors import (
    InvalidHashLength,
    MalformedEncoding,
    UnsupportedPrefix,
    WrongLength,
)

MAINNET_PREFIX = "xch"
TESTNET_PREFIX = "txch"
PUZZLE_HASH_WORD_COUNT = 52

_CHARSET = frozenset("qpzry9x8gf2tvdw0s3jn54khce6mua7l")
_CHECKSUM_WORD_COUNT = 6
_HEX_PUZZLE_HASH_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def _import_sdk() -> Any:
    return importlib.import_module("chia_wallet_sdk")


@dataclass(frozen=True, slots=True)
class DecodedAddress:
    prefix: str
    puzzle_hash: bytes


def _split_address(address: str) -> tuple[str, str]:
    if not address:
        raise MalformedEncoding("address_empty")
    if any(ord(ch) < 33 or ord(ch) > 126 for ch in address):
        raise MalformedEncoding("address_invalid_character")
    if address.lower() != address and address.upper() != address:
        raise MalformedEncoding("address_mixed_case")
    bech = address.lower()
    pos = bech.rfind("1")
    if pos < 1 or pos + 1 + _CHECKSUM_WORD_COUNT > len(bech):
        raise MalformedEncoding("address_missing_separator_or_length")
    for ch in bech[pos + 1 :]:
        if ch not in _CHARSET:
            raise MalformedEncoding(f"address_invalid_character:{ch}")
    return bech[:pos], bech[pos + 1 :]


class AddressCodec:
    """Encode and validate addresses for the configured network tags."""

    def __init__(self, *, allow_testnet: bool = False) -> None:
        prefixes = {MAINNET_PREFIX}
        if allow_testnet:
            prefixes.add(TESTNET_PREFIX)
        self._accepted_prefixes = frozenset(prefixes)

    @property
    def accepted_prefixes(self) -> frozenset[str]:
        return self._accepted_prefixes

    def decode(self, address: str) -> DecodedAddress:
        bech = str(address).strip() if address else ""
        _, data = _split_address(bech)
        bech = bech.lower()
        word_count = len(data) - _CHECKSUM_WORD_COUNT
        try:
            decoded = _import_sdk().Address.decode(bech)
        except Exception as exc:
            if word_count != PUZZLE_HASH_WORD_COUNT:
                raise WrongLength(
                    f"address_wrong_length:expected={PUZZLE_HASH_WORD_COUNT}:got={word_count}"
                ) from exc
            raise MalformedEncoding(f"address_checksum_mismatch:{exc}") from exc
        prefix = str(decoded.prefix)
        if prefix not in self._accepted_prefixes:
            raise UnsupportedPrefix(f"address_unsupported_prefix:{prefix}")
        puzzle_hash = bytes(decoded.puzzle_hash)
        if len(puzzle_hash) != 32:
            raise WrongLength(
                f"address_wrong_length:expected={PUZZLE_HASH_WORD_COUNT}:got={word_count}"
            )
        return DecodedAddress(prefix=prefix, puzzle_hash=puzzle_hash)

    def encode(self, puzzle_hash: bytes, prefix: str = MAINNET_PREFIX) -> str:
        return encode_puzzle_hash(puzzle_hash, prefix)

    def is_valid(self, address: str) -> bool:
        try:
            self.decode(address)
        except (MalformedEncoding, WrongLength, UnsupportedPrefix):
            return False
        return True

    def puzzle_hash_from_address_or_hex(self, value: str) -> bytes:
        """Accept a 64-hex puzzle hash (``0x`` optional) or an address."""
        raw = str(value or "").strip()
        if _HEX_PUZZLE_HASH_RE.match(raw):
            return bytes.fromhex(raw.removeprefix("0x"))
        return self.decode(raw).puzzle_hash


def encode_puzzle_hash(puzzle_hash: bytes, prefix: str) -> str:
    if not isinstance(puzzle_hash, bytes | bytearray) or len(puzzle_hash) != 32:
        size = len(puzzle_hash) if isinstance(puzzle_hash, bytes | bytearray) else "n/a"
        raise InvalidHashLength(f"puzzle_hash_invalid_length:{size}")
    hrp = prefix.strip().lower()
    return str(_import_sdk().Address(bytes(puzzle_hash), hrp).encode())
