"""
coinbase_builder.py - Synthetic coinbase transactions and miner log frames.

Builds mining.notify coinbase halves the way a pool splits them
(coinbase1 | extranonce | coinbase2) and wraps the resulting Stratum JSON in
an ESP-IDF log frame as AxeOS / NerdOS firmware would stream it.
"""

import json
import struct
from typing import List, Tuple

# ── Known scripts and their addresses ─────────────────────────────────────

P2PKH_HASH = bytes.fromhex("62e907b15cbf27d5425399ebf6f0fb50ebb88f18")
P2PKH_ADDRESS = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"

P2SH_HASH = bytes.fromhex("74f209f6ea907e2ea48f74fae05782ae8a665257")
P2SH_ADDRESS = "3CMNFxN1oHBc4R1EpboAL5yzHGgE611Xou"

P2WPKH_HASH = bytes.fromhex("751e76e8199196d454941c45d1b3a323f1433bd6")
P2WPKH_ADDRESS = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"

P2WSH_HASH = bytes.fromhex("1863143c14c5166804bd19203356da136c985678cd4d27a1b8c6329604903262")
P2WSH_ADDRESS = "bc1qrp33g0q5c5txsp9arysrx4k6zdkfs4nce4xj0gdcccefvpysxf3qccfmv3"

ATTACKER_HASH = bytes([0x11] * 20)
ATTACKER_ADDRESS = "12ZEw5Hcv1hTb6YUQJ69y1V7uhcoDz92PH"

WITNESS_COMMITMENT = bytes.fromhex(
    "aa21a9ed4cf19dd80ae31a4bb9656726305874862cd21ac3e53887193339fa73545c4ad5"
)

# Coinbase paying 3.125 BTC subsidy + fees
BLOCK_REWARD = 312_500_000 + 1_234_567

# Real SoloHash job: its input sequence is 00000000, so the ffffffff marker
# only appears as the null prevout index (followed by a 42-byte script).
SOLOHASH_COINBASE1 = (
    "01000000010000000000000000000000000000000000000000000000000000000000000000"
    "ffffffff2a03c91d0e0438bb256900"
)
SOLOHASH_COINBASE2 = (
    "174d696e656420627920536f6c6f486173682e636f2e756b00000000020000000000000000266a24"
    "aa21a9ed4cf19dd80ae31a4bb9656726305874862cd21ac3e53887193339fa73545c4ad57e31bd12"
    "00000000160014c127bde9fd0248a19362a52de0f23fae736a2aeb00000000"
)


def p2pkh_script(h: bytes = P2PKH_HASH) -> bytes:
    return bytes([0x76, 0xA9, 0x14]) + h + bytes([0x88, 0xAC])


def p2sh_script(h: bytes = P2SH_HASH) -> bytes:
    return bytes([0xA9, 0x14]) + h + bytes([0x87])


def p2wpkh_script(h: bytes = P2WPKH_HASH) -> bytes:
    return bytes([0x00, 0x14]) + h


def p2wsh_script(h: bytes = P2WSH_HASH) -> bytes:
    return bytes([0x00, 0x20]) + h


def op_return_script(data: bytes = WITNESS_COMMITMENT) -> bytes:
    return bytes([0x6A, len(data)]) + data


def compact_size(n: int) -> bytes:
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def tx_output(value: int, script: bytes) -> bytes:
    return struct.pack("<q", value) + compact_size(len(script)) + script


def output_section(outputs: List[Tuple[int, bytes]]) -> bytes:
    """Sequence marker, output count and serialized outputs."""
    body = b"".join(tx_output(value, script) for value, script in outputs)
    return b"\xff\xff\xff\xff" + compact_size(len(outputs)) + body


def build_coinbase(outputs: List[Tuple[int, bytes]]) -> Tuple[str, str]:
    """Return (coinbase1, coinbase2) hex for a coinbase paying ``outputs``."""
    coinbase1 = (
        bytes.fromhex("01000000")            # version
        + b"\x01"                            # one input
        + bytes(32) + b"\xff\xff\xff\xff"    # null prevout
        + b"\x2a"                            # script length
        + bytes.fromhex("03c91d0e0438bb2569")  # height + time
    )
    coinbase2 = (
        b"\x0fpoolcheck/test/"               # pool tag
        + output_section(outputs)
        + bytes(4)                           # locktime
    )
    return coinbase1.hex(), coinbase2.hex()


def notify_params(coinbase1: str, coinbase2: str, job_id: str = "1a2b3c") -> list:
    return [
        job_id,
        "00000000000000000001ad6b2d6b7e5d5c2a3c6d3e9ab16a8d0d6e8f0a1b2c3d",
        coinbase1,
        coinbase2,
        ["5a1f8e2c3d4b6a7980f1e2d3c4b5a69788f9e0d1c2b3a4958677889900aabbcc"],
        "20000000",
        "17034219",
        "6925bb38",
        True,
    ]


def notify_json(coinbase1: str, coinbase2: str, job_id: str = "1a2b3c") -> str:
    return json.dumps({
        "id": None,
        "method": "mining.notify",
        "params": notify_params(coinbase1, coinbase2, job_id),
    })


def log_frame(message: str, component: str = "stratum_api", level: str = "I",
              timestamp_ms: int = 103482, color: str = "0;32") -> str:
    return f"\x1b[{color}m{level} ({timestamp_ms}) {component}: {message}\x1b[0m"


def notify_line(outputs: List[Tuple[int, bytes]], job_id: str = "1a2b3c",
                component: str = "stratum_api") -> str:
    """A complete log line carrying a mining.notify for ``outputs``."""
    coinbase1, coinbase2 = build_coinbase(outputs)
    return log_frame("rx: " + notify_json(coinbase1, coinbase2, job_id), component=component)
