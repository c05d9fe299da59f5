"""Request helpers shared by the routers."""

from typing import TYPE_CHECKING

from fastapi import HTTPException
from starlette.requests import Request

if TYPE_CHECKING:
    from poolcheck.server import MonitorServer


def get_server(request: Request) -> "MonitorServer":
    """The MonitorServer behind this app; 503 until its services are up."""
    srv = request.app.state.server
    if srv.monitor is None or srv.storage is None:
        raise HTTPException(status_code=503, detail="Monitor is starting")
    return srv
