"""
coinbase.py - Coinbase transaction output extraction.

mining.notify splits the coinbase transaction around the extranonce:
coinbase1 + extranonce1 + extranonce2 + coinbase2. The extranonce length is
unknown here, so instead of walking the transaction from the start, the
parser looks for the single input's sequence field (ffffffff) followed by a
plausible output count (1-10) and reads the outputs from there.

A coinbase script that happens to contain ffffffff followed by a byte in
1..10 before the real sequence field would be misparsed. Pools do not emit
such scripts in practice and the parser does not guard against it.
"""

import struct
from typing import List, Optional, Tuple

from poolcheck.address_codec import base58check_encode, bech32_encode
from poolcheck.records import BitcoinOutput, ScriptType
from poolcheck.stratum import MiningNotifyParams

SEQUENCE_MARKER = b"\xff\xff\xff\xff"
PLAUSIBLE_OUTPUT_COUNT = range(1, 11)
MAX_OUTPUT_COUNT = 20

P2PKH_VERSION = 0x00
P2SH_VERSION = 0x05
SEGWIT_HRP = "bc"
OP_RETURN_LABEL = "OP_RETURN"

# Opcodes used in standard output scripts
OP_0 = 0x00
OP_RETURN = 0x6A
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC
PUSH_20 = 0x14
PUSH_32 = 0x20


class CoinbaseError(ValueError):
    """Base class for coinbase parsing failures."""


class InvalidHex(CoinbaseError):
    def __init__(self, detail: str = ""):
        super().__init__(f"Invalid hex string in coinbase data{': ' + detail if detail else ''}")


class SequenceMarkerNotFound(CoinbaseError):
    def __init__(self):
        super().__init__("Could not find ffffffff sequence marker in coinbase")


class InvalidOutputCount(CoinbaseError):
    def __init__(self, count: int):
        self.count = count
        super().__init__(f"Invalid output count: {count}")


class UnexpectedEndOfData(CoinbaseError):
    def __init__(self):
        super().__init__("Unexpected end of coinbase data")


class InvalidVarInt(CoinbaseError):
    def __init__(self):
        super().__init__("Invalid variable-length integer in coinbase")


class NegativeOutputValue(CoinbaseError):
    def __init__(self, index: int, value: int):
        self.index = index
        self.value = value
        super().__init__(f"Output {index} has negative value {value}")


class UnsupportedScriptType(CoinbaseError):
    def __init__(self, script_hex: str):
        self.script_hex = script_hex
        super().__init__(f"Unsupported script type: {script_hex[:20]}...")


def extract_outputs(params: MiningNotifyParams) -> List[BitcoinOutput]:
    """Decode the payout outputs carried by a mining.notify job."""
    coinbase_hex = (params.coinbase1 + params.coinbase2).replace(" ", "")
    try:
        data = bytes.fromhex(coinbase_hex)
    except ValueError as e:
        raise InvalidHex(str(e)) from e
    return parse_outputs(data)


def parse_outputs(data: bytes) -> List[BitcoinOutput]:
    cursor = find_outputs_start(data)
    if cursor is None:
        raise SequenceMarkerNotFound()

    count, cursor = read_varint(data, cursor)
    if not 1 <= count <= MAX_OUTPUT_COUNT:
        raise InvalidOutputCount(count)

    outputs = []
    for index in range(count):
        output, cursor = parse_output(data, cursor, index)
        outputs.append(output)
    return outputs


def find_outputs_start(data: bytes) -> Optional[int]:
    """Offset of the output count following the input's sequence field, or None."""
    start = data.find(SEQUENCE_MARKER)
    while start != -1 and start + 4 < len(data):
        if data[start + 4] in PLAUSIBLE_OUTPUT_COUNT:
            return start + 4
        start = data.find(SEQUENCE_MARKER, start + 1)
    return None


def read_varint(data: bytes, cursor: int) -> Tuple[int, int]:
    """Read a Bitcoin compactsize integer. Returns (value, new_cursor)."""
    if cursor < 0 or cursor >= len(data):
        raise UnexpectedEndOfData()
    prefix = data[cursor]
    cursor += 1
    if prefix < 0xFD:
        return prefix, cursor
    width = {0xFD: 2, 0xFE: 4, 0xFF: 8}.get(prefix)
    if width is None:
        raise InvalidVarInt()
    if cursor + width > len(data):
        raise UnexpectedEndOfData()
    return int.from_bytes(data[cursor:cursor + width], "little"), cursor + width


def parse_output(data: bytes, cursor: int, index: int) -> Tuple[BitcoinOutput, int]:
    # value (int64 LE) | script length (compactsize) | script
    if cursor + 8 > len(data):
        raise UnexpectedEndOfData()
    (value,) = struct.unpack_from("<q", data, cursor)
    if value < 0:
        raise NegativeOutputValue(index, value)
    cursor += 8

    script_len, cursor = read_varint(data, cursor)
    if cursor + script_len > len(data):
        raise UnexpectedEndOfData()
    script = data[cursor:cursor + script_len]
    cursor += script_len

    address, script_type = decode_script(script)
    return BitcoinOutput(
        address=address,
        value_satoshis=value,
        output_index=index,
        script_type=script_type,
    ), cursor


def decode_script(script: bytes) -> Tuple[str, ScriptType]:
    """Classify a scriptPubKey and render its address."""
    n = len(script)

    if (n == 25 and script[0] == OP_DUP and script[1] == OP_HASH160 and script[2] == PUSH_20
            and script[23] == OP_EQUALVERIFY and script[24] == OP_CHECKSIG):
        return base58check_encode(script[3:23], P2PKH_VERSION), ScriptType.P2PKH

    if n == 23 and script[0] == OP_HASH160 and script[1] == PUSH_20 and script[22] == OP_EQUAL:
        return base58check_encode(script[2:22], P2SH_VERSION), ScriptType.P2SH

    if n == 22 and script[0] == OP_0 and script[1] == PUSH_20:
        return bech32_encode(SEGWIT_HRP, 0, script[2:22]), ScriptType.P2WPKH

    if n == 34 and script[0] == OP_0 and script[1] == PUSH_32:
        return bech32_encode(SEGWIT_HRP, 0, script[2:34]), ScriptType.P2WSH

    if n >= 1 and script[0] == OP_RETURN:
        return OP_RETURN_LABEL, ScriptType.OP_RETURN

    raise UnsupportedScriptType(script.hex())
