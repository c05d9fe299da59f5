"""
Pool Output Verification Engine

Decodes Stratum mining.notify jobs captured from miner debug logs, rebuilds
the coinbase payout outputs and checks them against approved pool baselines
to detect pool hijacking.
"""

__version__ = "0.1.0"

__all__ = [
    "address_codec",
    "alert_stream",
    "approvals",
    "coinbase",
    "comparator",
    "feeds",
    "logline",
    "monitor",
    "records",
    "server",
    "storage",
    "stratum",
]
