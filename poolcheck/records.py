"""
records.py - Data model for pool output verification.

Outputs, pool identities, approvals, alerts, and the miner record the
monitor reads to find a miner's active pool.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

SATOSHIS_PER_BTC = 100_000_000


class ScriptType(str, Enum):
    P2PKH = "P2PKH"
    P2SH = "P2SH"
    P2WPKH = "P2WPKH"
    P2WSH = "P2WSH"
    OP_RETURN = "OP_RETURN"
    UNKNOWN = "Unknown"

    @property
    def display_name(self) -> str:
        return _SCRIPT_DISPLAY_NAMES[self]

    @property
    def is_spendable(self) -> bool:
        return self is not ScriptType.OP_RETURN


_SCRIPT_DISPLAY_NAMES = {
    ScriptType.P2PKH: "Legacy",
    ScriptType.P2SH: "Script Hash",
    ScriptType.P2WPKH: "Native SegWit",
    ScriptType.P2WSH: "SegWit Script",
    ScriptType.OP_RETURN: "Data (OP_RETURN)",
    ScriptType.UNKNOWN: "Unknown",
}


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(AlertSeverity).index(self)


@dataclass(frozen=True)
class BitcoinOutput:
    address: str
    value_satoshis: int
    output_index: int
    script_type: ScriptType = ScriptType.UNKNOWN

    @property
    def value_btc(self) -> float:
        return self.value_satoshis / SATOSHIS_PER_BTC

    @property
    def is_spendable(self) -> bool:
        return self.script_type.is_spendable

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "value_satoshis": self.value_satoshis,
            "output_index": self.output_index,
            "script_type": self.script_type.value,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "BitcoinOutput":
        # Older rows were written before script_type existed.
        raw_type = d.get("script_type")
        try:
            script_type = ScriptType(raw_type) if raw_type else ScriptType.UNKNOWN
        except ValueError:
            script_type = ScriptType.UNKNOWN
        return cls(
            address=d["address"],
            value_satoshis=int(d["value_satoshis"]),
            output_index=int(d["output_index"]),
            script_type=script_type,
        )


def outputs_to_dicts(outputs: List[BitcoinOutput]) -> List[dict]:
    return [o.to_dict() for o in outputs]


def outputs_from_dicts(items: List[dict]) -> List[BitcoinOutput]:
    return [BitcoinOutput.from_dict(d) for d in items]


def extract_user_base(stratum_user: str) -> str:
    """Account part of a Stratum username (``"bc1q...xyz.worker1"`` -> ``"bc1q...xyz"``)."""
    for part in stratum_user.split("."):
        if part:
            return part
    return stratum_user


@dataclass(frozen=True)
class PoolIdentity:
    pool_url: str
    pool_port: int
    stratum_user_base: str

    @classmethod
    def from_stratum_user(cls, pool_url: str, pool_port: int, stratum_user: str) -> "PoolIdentity":
        return cls(pool_url, int(pool_port), extract_user_base(stratum_user))

    @property
    def identifier(self) -> str:
        return f"{self.pool_url}:{self.pool_port}:{self.stratum_user_base}"

    def to_dict(self) -> dict:
        return {
            "pool_url": self.pool_url,
            "pool_port": self.pool_port,
            "stratum_user_base": self.stratum_user_base,
        }


@dataclass
class PoolApproval:
    identity: PoolIdentity
    approved_outputs: List[BitcoinOutput]
    verified_at: float
    verified_by_miner_id: Optional[str] = None
    verification_notes: Optional[str] = None
    is_auto_approved: bool = False

    @staticmethod
    def can_auto_approve(stratum_user_base: str, outputs: List[BitcoinOutput]) -> bool:
        """A pool paying exactly one output to the miner's own address needs no review."""
        return len(outputs) == 1 and outputs[0].address == stratum_user_base

    def to_dict(self) -> dict:
        return {
            **self.identity.to_dict(),
            "pool_identifier": self.identity.identifier,
            "approved_outputs": outputs_to_dicts(self.approved_outputs),
            "verified_at": self.verified_at,
            "verified_by_miner_id": self.verified_by_miner_id,
            "verification_notes": self.verification_notes,
            "is_auto_approved": self.is_auto_approved,
        }


@dataclass
class PoolAlertEvent:
    id: str
    detected_at: float
    miner_id: str
    miner_hostname: str
    miner_ip: str
    pool_identity: PoolIdentity
    stratum_user: str
    is_using_fallback_pool: bool
    expected_outputs: List[BitcoinOutput]
    actual_outputs: List[BitcoinOutput]
    severity: AlertSeverity
    is_dismissed: bool = False
    dismissed_at: Optional[float] = None
    dismissal_notes: Optional[str] = None
    raw_message: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return not self.is_dismissed

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "detected_at": self.detected_at,
            "miner_id": self.miner_id,
            "miner_hostname": self.miner_hostname,
            "miner_ip": self.miner_ip,
            **self.pool_identity.to_dict(),
            "pool_identifier": self.pool_identity.identifier,
            "stratum_user": self.stratum_user,
            "is_using_fallback_pool": self.is_using_fallback_pool,
            "expected_outputs": outputs_to_dicts(self.expected_outputs),
            "actual_outputs": outputs_to_dicts(self.actual_outputs),
            "severity": self.severity.value,
            "is_dismissed": self.is_dismissed,
            "dismissed_at": self.dismissed_at,
            "dismissal_notes": self.dismissal_notes,
            "raw_message": self.raw_message,
        }


@dataclass
class MinerRecord:
    miner_id: str
    hostname: str
    ip_address: str
    stratum_url: str
    stratum_port: int
    stratum_user: str
    fallback_stratum_url: str = ""
    fallback_stratum_port: int = 0
    fallback_stratum_user: str = ""
    is_using_fallback: bool = False

    def active_stratum_user(self) -> str:
        return self.fallback_stratum_user if self.is_using_fallback else self.stratum_user

    def active_pool_identity(self) -> PoolIdentity:
        if self.is_using_fallback:
            return PoolIdentity.from_stratum_user(
                self.fallback_stratum_url, self.fallback_stratum_port, self.fallback_stratum_user,
            )
        return PoolIdentity.from_stratum_user(self.stratum_url, self.stratum_port, self.stratum_user)

    def to_dict(self) -> dict:
        return {
            "miner_id": self.miner_id,
            "hostname": self.hostname,
            "ip_address": self.ip_address,
            "stratum_url": self.stratum_url,
            "stratum_port": self.stratum_port,
            "stratum_user": self.stratum_user,
            "fallback_stratum_url": self.fallback_stratum_url,
            "fallback_stratum_port": self.fallback_stratum_port,
            "fallback_stratum_user": self.fallback_stratum_user,
            "is_using_fallback": self.is_using_fallback,
        }


@dataclass
class PendingValidationEvent:
    """A decoded mining.notify waiting in the batch queue."""

    miner_id: str
    outputs: List[BitcoinOutput]
    raw_text: str
    timestamp: float


@dataclass
class VerificationEvent:
    miner_id: str
    pool_identity: PoolIdentity
    timestamp: float
    output_count: int = 0


@dataclass
class ComparisonResult:
    matches: bool
    reason: Optional[str] = None
