"""Pydantic request models for the REST API."""

from typing import List, Optional

from pydantic import BaseModel, Field

from poolcheck.records import BitcoinOutput, MinerRecord, ScriptType


class OutputModel(BaseModel):
    address: str
    value_satoshis: int = Field(ge=0)
    output_index: int = Field(ge=0)
    script_type: ScriptType = ScriptType.UNKNOWN

    def to_output(self) -> BitcoinOutput:
        return BitcoinOutput(
            address=self.address,
            value_satoshis=self.value_satoshis,
            output_index=self.output_index,
            script_type=self.script_type,
        )


def outputs_from_models(models: List[OutputModel]) -> List[BitcoinOutput]:
    outputs = [m.to_output() for m in models]
    if [o.output_index for o in outputs] != list(range(len(outputs))):
        raise ValueError("output_index must run 0..n-1 in order")
    return outputs


class ApprovalRequest(BaseModel):
    pool_url: str
    pool_port: int
    stratum_user: str
    outputs: List[OutputModel]
    verified_by_miner_id: Optional[str] = None
    notes: Optional[str] = None


class AutoApproveRequest(BaseModel):
    pool_url: str
    pool_port: int
    stratum_user: str
    outputs: List[OutputModel]
    miner_id: Optional[str] = None


class MinerRequest(BaseModel):
    hostname: str = ""
    ip_address: str = ""
    stratum_url: str
    stratum_port: int
    stratum_user: str
    fallback_stratum_url: str = ""
    fallback_stratum_port: int = 0
    fallback_stratum_user: str = ""
    is_using_fallback: bool = False

    def to_record(self, miner_id: str) -> MinerRecord:
        return MinerRecord(miner_id=miner_id, **self.model_dump())


class FallbackRequest(BaseModel):
    is_using_fallback: bool


class DismissRequest(BaseModel):
    notes: Optional[str] = None


class CleanupRequest(BaseModel):
    older_than_days: int = 90


class LogLinesRequest(BaseModel):
    lines: List[str]


class SubscribeRequest(BaseModel):
    require_approval: bool = True
