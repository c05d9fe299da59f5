"""
stratum.py - Stratum message decoding.

Stratum is JSON-RPC-like, but ``params`` is heterogeneous: a single
mining.notify mixes hex strings, an array of merkle branches and a boolean.
Each element is decoded into a tagged ``StratumValue`` and mining.notify is
then extracted positionally. A message that does not fit yields None, never
a partially filled record.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

logger = logging.getLogger("stratum")

MINING_NOTIFY = "mining.notify"
MINING_NOTIFY_MIN_PARAMS = 9


class StratumError(ValueError):
    """Raised when text is not a JSON object."""


class StratumKind(str, Enum):
    STRING = "string"
    INT = "int"
    DOUBLE = "double"
    BOOL = "bool"
    ARRAY = "array"
    NULL = "null"


@dataclass(frozen=True)
class StratumValue:
    kind: StratumKind
    value: Any = None

    @classmethod
    def from_json(cls, value: Any) -> "StratumValue":
        # bool is a subclass of int: test it first or true/false decode as 1/0.
        if isinstance(value, str):
            return cls(StratumKind.STRING, value)
        if isinstance(value, bool):
            return cls(StratumKind.BOOL, value)
        if isinstance(value, int):
            return cls(StratumKind.INT, value)
        if isinstance(value, float):
            return cls(StratumKind.DOUBLE, value)
        if isinstance(value, list) and all(isinstance(v, str) for v in value):
            return cls(StratumKind.ARRAY, list(value))
        if value is None:
            return cls(StratumKind.NULL)
        logger.debug("Unsupported stratum value type %s", type(value).__name__)
        return cls(StratumKind.NULL)

    @property
    def string_value(self) -> Optional[str]:
        return self.value if self.kind is StratumKind.STRING else None

    @property
    def int_value(self) -> Optional[int]:
        return self.value if self.kind is StratumKind.INT else None

    @property
    def bool_value(self) -> Optional[bool]:
        return self.value if self.kind is StratumKind.BOOL else None

    @property
    def array_value(self) -> Optional[List[str]]:
        return self.value if self.kind is StratumKind.ARRAY else None

    def __str__(self) -> str:
        if self.kind is StratumKind.STRING:
            return f"string({self.value[:20]}...)"
        if self.kind is StratumKind.ARRAY:
            return f"array[{len(self.value)}]"
        if self.kind is StratumKind.NULL:
            return "null"
        return f"{self.kind.value}({self.value})"


@dataclass(frozen=True)
class MiningNotifyParams:
    job_id: str
    prev_hash: str
    coinbase1: str
    coinbase2: str
    merkle_branches: List[str]
    version: str
    nbits: str
    ntime: str
    clean_jobs: bool


# Positional layout of mining.notify params: (field, accessor)
_NOTIFY_LAYOUT = [
    ("job_id", "string_value"),
    ("prev_hash", "string_value"),
    ("coinbase1", "string_value"),
    ("coinbase2", "string_value"),
    ("merkle_branches", "array_value"),
    ("version", "string_value"),
    ("nbits", "string_value"),
    ("ntime", "string_value"),
    ("clean_jobs", "bool_value"),
]


@dataclass(frozen=True)
class StratumMessage:
    id: Optional[int] = None
    method: Optional[str] = None
    params: Optional[List[StratumValue]] = None
    result: Optional[StratumValue] = None
    error: Optional[StratumValue] = None

    @classmethod
    def parse(cls, text: str) -> "StratumMessage":
        try:
            obj = json.loads(text)
        except (ValueError, TypeError, RecursionError) as e:
            raise StratumError(f"invalid JSON: {e}") from e
        if not isinstance(obj, dict):
            raise StratumError("stratum message is not a JSON object")

        msg_id = obj.get("id")
        if isinstance(msg_id, bool) or not isinstance(msg_id, int):
            msg_id = None
        method = obj.get("method")
        if not isinstance(method, str):
            method = None

        params = None
        if isinstance(obj.get("params"), list):
            params = [StratumValue.from_json(p) for p in obj["params"]]

        result = StratumValue.from_json(obj["result"]) if "result" in obj else None
        error = StratumValue.from_json(obj["error"]) if "error" in obj else None
        return cls(id=msg_id, method=method, params=params, result=result, error=error)

    @property
    def mining_notify_params(self) -> Optional[MiningNotifyParams]:
        if self.method != MINING_NOTIFY:
            return None
        if self.params is None:
            logger.debug("mining.notify without params")
            return None
        if len(self.params) < MINING_NOTIFY_MIN_PARAMS:
            logger.warning(
                "mining.notify has %d params (need %d): %s",
                len(self.params), MINING_NOTIFY_MIN_PARAMS,
                ", ".join(str(p) for p in self.params),
            )
            return None

        fields = {}
        for index, (name, accessor) in enumerate(_NOTIFY_LAYOUT):
            value = getattr(self.params[index], accessor)
            if value is None:
                logger.warning("mining.notify params[%d] (%s) has wrong type: %s",
                               index, name, self.params[index])
                return None
            fields[name] = value
        return MiningNotifyParams(**fields)


def decode_stratum_message(text: str) -> Optional[StratumMessage]:
    """Total variant of ``StratumMessage.parse``: garbled input yields None."""
    try:
        return StratumMessage.parse(text)
    except StratumError as e:
        logger.debug("Discarding undecodable stratum text: %s", e)
        return None
