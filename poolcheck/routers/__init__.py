"""Router package - collects all API routers and registers them on the FastAPI app."""

from fastapi import FastAPI

from poolcheck.routers import (
    status,
    alerts,
    approvals,
    miners,
    ws as ws_router,
)


def register_all_routers(app: FastAPI):
    app.include_router(status.router)
    app.include_router(alerts.router)
    app.include_router(approvals.router)
    app.include_router(miners.router)
    ws_router.register(app)
