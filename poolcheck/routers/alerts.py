"""Alerts router - /api/alerts/* endpoints."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from starlette.requests import Request

from poolcheck.deps import get_server
from poolcheck.models import CleanupRequest, DismissRequest

router = APIRouter()


@router.get("/api/alerts")
async def list_alerts(
    request: Request,
    active_only: bool = Query(default=True),
    miner_id: Optional[str] = Query(default=None, max_length=128),
    limit: int = Query(default=100, ge=1, le=1000),
):
    srv = get_server(request)
    if active_only:
        alerts = await srv.approvals.get_active_alerts(miner_id)
        alerts = alerts[:limit]
    else:
        alerts = await srv.approvals.get_all_alerts(miner_id, limit)
    return {"items": [a.to_dict() for a in alerts], "total": len(alerts)}


@router.get("/api/alerts/{alert_id}")
async def get_alert(request: Request, alert_id: str):
    srv = get_server(request)
    alert = await srv.storage.alerts.get(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert.to_dict()


@router.post("/api/alerts/{alert_id}/dismiss")
async def dismiss_alert(request: Request, alert_id: str, req: Optional[DismissRequest] = None):
    srv = get_server(request)
    notes = req.notes if req else None
    try:
        alert = await srv.approvals.dismiss_alert(alert_id, notes)
    except KeyError:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert.to_dict()


@router.post("/api/alerts/cleanup")
async def cleanup_alerts(request: Request, req: Optional[CleanupRequest] = None):
    srv = get_server(request)
    days = req.older_than_days if req else 90
    try:
        removed = await srv.approvals.cleanup_old_alerts(days)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"removed": removed, "older_than_days": days}
