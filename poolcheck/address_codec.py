"""
address_codec.py - Bitcoin address encoders.

Base58Check renders legacy (P2PKH) and script-hash (P2SH) addresses from a
20-byte hash plus a version byte. Bech32 renders native segwit (P2WPKH,
P2WSH) addresses from a witness version and program (BIP-173).
"""

import hashlib
from typing import Iterable, List

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_GENERATOR = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]

CHECKSUM_LENGTH = 4


class Bech32Error(ValueError):
    """Base class for Bech32 encoding errors."""


class InvalidPadding(Bech32Error):
    """Non-zero residual bits when regrouping without padding."""


# ---------------------------------------------------------------------------
# Base58Check
# ---------------------------------------------------------------------------

def double_sha256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def base58check_encode(payload: bytes, version: int) -> str:
    """Encode ``payload`` with a leading version byte and a 4-byte checksum.

    Leading zero bytes of the versioned payload each become a literal '1';
    the remainder is the big-endian integer value written in base 58.
    """
    if not 0 <= version <= 0xFF:
        raise ValueError(f"version byte out of range: {version}")

    versioned = bytes([version]) + bytes(payload)
    data = versioned + double_sha256(versioned)[:CHECKSUM_LENGTH]

    value = int.from_bytes(data, "big")
    digits = []
    while value > 0:
        value, digit = divmod(value, 58)
        digits.append(BASE58_ALPHABET[digit])

    leading_zeros = len(versioned) - len(versioned.lstrip(b"\x00"))
    return "1" * leading_zeros + "".join(reversed(digits))


# ---------------------------------------------------------------------------
# Bech32
# ---------------------------------------------------------------------------

def bech32_polymod(values: Iterable[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ value
        for i in range(5):
            if (top >> i) & 1:
                chk ^= BECH32_GENERATOR[i]
    return chk


def bech32_hrp_expand(hrp: str) -> List[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def bech32_create_checksum(hrp: str, data: List[int]) -> List[int]:
    values = bech32_hrp_expand(hrp) + data + [0, 0, 0, 0, 0, 0]
    polymod = bech32_polymod(values) ^ 1
    return [(polymod >> (5 * (5 - i))) & 31 for i in range(6)]


def convert_bits(data: Iterable[int], from_bits: int, to_bits: int, pad: bool = True) -> List[int]:
    """Regroup a sequence of ``from_bits``-wide values into ``to_bits``-wide values."""
    acc = 0
    bits = 0
    result = []
    maxv = (1 << to_bits) - 1
    max_acc = (1 << (from_bits + to_bits - 1)) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise Bech32Error(f"value {value} does not fit in {from_bits} bits")
        acc = ((acc << from_bits) | value) & max_acc
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((acc >> bits) & maxv)
    if pad:
        if bits:
            result.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        raise InvalidPadding("non-zero padding bits")
    return result


def bech32_encode(hrp: str, version: int, program: bytes) -> str:
    """Encode a segwit witness program as a Bech32 address (e.g. ``bc1q...``)."""
    data = [version] + convert_bits(program, 8, 5, pad=True)
    checksum = bech32_create_checksum(hrp, data)
    return hrp + "1" + "".join(BECH32_CHARSET[d] for d in data + checksum)
