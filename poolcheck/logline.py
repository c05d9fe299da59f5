"""
logline.py - Miner debug log line parsing.

AxeOS / NerdOS firmware stream ESP-IDF style log frames over the miner's
websocket, e.g.::

    \\x1b[0;32mI (103482) stratum_api: rx: {"id":null,"method":"mining.notify",...}\\x1b[0m

Each frame carries a level, a millisecond uptime stamp, a component tag and
the message. Only Stratum components carrying mining.notify matter to the
pool monitor.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from poolcheck.stratum import StratumMessage, decode_stratum_message

logger = logging.getLogger("logline")

_LOG_RE = re.compile(r"\[([0-9;]+)m([A-Z]) \((\d+)\) ([^:]+): (.+)\[0m")

DEFAULT_COLOR_CODE = 37

# AxeOS uses "stratum_api", NerdOS uses "stratum task (Pri)"
STRATUM_COMPONENTS = {"stratum_api", "stratum task (Pri)"}

_JSON_START_PATTERNS = ('{"params"', '{ "params"', '{"id"', '{ "id"', '{"method"')


class LogLevel(str, Enum):
    ERROR = "E"
    WARNING = "W"
    INFO = "I"
    DEBUG = "D"
    VERBOSE = "V"


@dataclass(frozen=True)
class LogEntry:
    timestamp_ms: int
    level: LogLevel
    component: str
    message: str
    raw_text: str
    color_code: int = DEFAULT_COLOR_CODE
    received_at: float = field(default_factory=time.time)


def parse_log_line(raw: str) -> Optional[LogEntry]:
    m = _LOG_RE.search(raw)
    if m is None:
        logger.debug("Failed to parse log line: %r", raw[:120])
        return None

    color_seq, level_char, ts, component, message = m.groups()
    try:
        level = LogLevel(level_char)
    except ValueError:
        return None

    parts = color_seq.split(";")
    color_code = int(parts[1]) if len(parts) == 2 and parts[1].isdigit() else DEFAULT_COLOR_CODE

    return LogEntry(
        timestamp_ms=int(ts),
        level=level,
        component=component,
        message=message.rstrip("\x1b"),
        raw_text=raw,
        color_code=color_code,
    )


def is_stratum_component(component: str) -> bool:
    return component in STRATUM_COMPONENTS or "stratum" in component.lower()


def is_mining_notify(entry: LogEntry) -> bool:
    return is_stratum_component(entry.component) and "mining.notify" in entry.message


def extract_json_payload(message: str) -> Optional[str]:
    """Cut the JSON object out of a log message, tolerating prefixes and suffixes."""
    start = -1
    for pattern in _JSON_START_PATTERNS:
        start = message.find(pattern)
        if start != -1:
            break
    if start == -1:
        start = message.find("{")
    end = message.rfind("}")
    if start == -1 or end < start:
        return None
    return message[start:end + 1]


def extract_stratum_message(entry: LogEntry) -> Optional[StratumMessage]:
    payload = extract_json_payload(entry.message)
    if payload is None:
        return None
    return decode_stratum_message(payload)
