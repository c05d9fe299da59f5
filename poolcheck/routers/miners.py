"""Miners router - /api/miners/* endpoints: pool config, subscriptions, log ingest."""

from typing import Optional

from fastapi import APIRouter, HTTPException
from starlette.requests import Request

from poolcheck.deps import get_server
from poolcheck.models import FallbackRequest, LogLinesRequest, MinerRequest, SubscribeRequest

router = APIRouter()


def _miner_view(srv, miner) -> dict:
    d = miner.to_dict()
    d["active_pool"] = miner.active_pool_identity().identifier
    d["subscribed"] = srv.monitor.is_subscribed(miner.miner_id)
    return d


@router.get("/api/miners")
async def list_miners(request: Request):
    srv = get_server(request)
    miners = await srv.storage.miners.list_all()
    return {"items": [_miner_view(srv, m) for m in miners], "total": len(miners)}


@router.get("/api/miners/{miner_id}")
async def get_miner(request: Request, miner_id: str):
    srv = get_server(request)
    miner = await srv.storage.miners.get(miner_id)
    if miner is None:
        raise HTTPException(status_code=404, detail="Miner not found")
    return _miner_view(srv, miner)


@router.put("/api/miners/{miner_id}")
async def upsert_miner(request: Request, miner_id: str, req: MinerRequest):
    srv = get_server(request)
    miner = await srv.storage.miners.upsert(req.to_record(miner_id))
    return _miner_view(srv, miner)


@router.post("/api/miners/{miner_id}/fallback")
async def set_fallback(request: Request, miner_id: str, req: FallbackRequest):
    srv = get_server(request)
    if not await srv.storage.miners.set_fallback(miner_id, req.is_using_fallback):
        raise HTTPException(status_code=404, detail="Miner not found")
    miner = await srv.storage.miners.get(miner_id)
    return _miner_view(srv, miner)


@router.post("/api/miners/{miner_id}/subscribe")
async def subscribe_miner(request: Request, miner_id: str, req: Optional[SubscribeRequest] = None):
    srv = get_server(request)
    require_approval = req.require_approval if req else True
    if await srv.storage.miners.get(miner_id) is None:
        raise HTTPException(status_code=404, detail="Miner not found")
    if srv.monitor.is_subscribed(miner_id):
        return {"miner_id": miner_id, "subscribed": True}

    feed = srv.feeds.get_or_create(miner_id)
    if require_approval:
        subscribed = await srv.monitor.subscribe_if_pool_approved(miner_id, feed)
    else:
        subscribed = await srv.monitor.subscribe_miner(miner_id, feed)
    if not subscribed:
        srv.feeds.remove(miner_id)
        raise HTTPException(status_code=409, detail="Miner's active pool is not approved")
    return {"miner_id": miner_id, "subscribed": True}


@router.delete("/api/miners/{miner_id}/subscribe")
async def unsubscribe_miner(request: Request, miner_id: str):
    srv = get_server(request)
    unsubscribed = await srv.monitor.unsubscribe_miner(miner_id)
    srv.feeds.remove(miner_id)
    if not unsubscribed:
        raise HTTPException(status_code=404, detail="Miner is not subscribed")
    return {"miner_id": miner_id, "subscribed": False}


@router.post("/api/miners/{miner_id}/logs")
async def ingest_logs(request: Request, miner_id: str, req: LogLinesRequest):
    srv = get_server(request)
    feed = srv.feeds.get(miner_id)
    if feed is None or feed.closed or not srv.monitor.is_subscribed(miner_id):
        raise HTTPException(status_code=409, detail="Miner is not subscribed")
    accepted = feed.push_lines(req.lines)
    return {"miner_id": miner_id, "received": len(req.lines), "accepted": accepted}
