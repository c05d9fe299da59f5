"""Approvals router - /api/approvals endpoints."""

import time

from fastapi import APIRouter, HTTPException, Query
from starlette.requests import Request

from poolcheck.deps import get_server
from poolcheck.models import ApprovalRequest, AutoApproveRequest, outputs_from_models
from poolcheck.records import PoolApproval, PoolIdentity

router = APIRouter()


@router.get("/api/approvals")
async def list_approvals(request: Request):
    srv = get_server(request)
    approvals = await srv.approvals.list_approvals()
    return {"items": [a.to_dict() for a in approvals], "total": len(approvals)}


@router.get("/api/approvals/lookup")
async def find_approval(
    request: Request,
    pool_url: str = Query(..., max_length=256),
    pool_port: int = Query(..., ge=0, le=65535),
    stratum_user: str = Query(..., max_length=256),
):
    srv = get_server(request)
    approval = await srv.approvals.find_approval_for_stratum_user(pool_url, pool_port, stratum_user)
    if approval is None:
        raise HTTPException(status_code=404, detail="Pool not approved")
    return approval.to_dict()


@router.put("/api/approvals")
async def save_approval(request: Request, req: ApprovalRequest):
    srv = get_server(request)
    try:
        outputs = outputs_from_models(req.outputs)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not outputs:
        raise HTTPException(status_code=400, detail="At least one output is required")
    approval = PoolApproval(
        identity=PoolIdentity.from_stratum_user(req.pool_url, req.pool_port, req.stratum_user),
        approved_outputs=outputs,
        verified_at=time.time(),
        verified_by_miner_id=req.verified_by_miner_id,
        verification_notes=req.notes,
    )
    saved = await srv.approvals.save_approval(approval)
    return saved.to_dict()


@router.post("/api/approvals/auto")
async def auto_approve(request: Request, req: AutoApproveRequest):
    srv = get_server(request)
    try:
        outputs = outputs_from_models(req.outputs)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    approval = await srv.approvals.auto_approve(
        req.pool_url, req.pool_port, req.stratum_user, outputs, req.miner_id,
    )
    if approval is None:
        raise HTTPException(status_code=400, detail="Outputs do not qualify for auto-approval")
    return approval.to_dict()


@router.delete("/api/approvals")
async def delete_approval(
    request: Request,
    pool_url: str = Query(..., max_length=256),
    pool_port: int = Query(..., ge=0, le=65535),
    stratum_user: str = Query(..., max_length=256),
):
    srv = get_server(request)
    identity = PoolIdentity.from_stratum_user(pool_url, pool_port, stratum_user)
    if not await srv.approvals.delete_approval(identity):
        raise HTTPException(status_code=404, detail="Approval not found")
    return {"deleted": identity.identifier}
