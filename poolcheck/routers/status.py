"""Status router - / and /api/status."""

from fastapi import APIRouter
from starlette.requests import Request

from poolcheck import __version__
from poolcheck.deps import get_server

router = APIRouter()


@router.get("/")
async def root(request: Request):
    srv = get_server(request)
    return {
        "service": "poolcheck",
        "version": __version__,
        "api_port": srv.api_port,
        "monitoring": srv.monitor.running,
    }


@router.get("/api/status")
async def server_status(request: Request):
    srv = get_server(request)
    return {
        "monitor": srv.monitor.status(),
        "approved_pools": len(await srv.approvals.list_approvals()),
        "active_alerts": await srv.storage.alerts.count_active(),
        "ws_clients": srv.ws_manager.client_count if srv.ws_manager else 0,
    }
