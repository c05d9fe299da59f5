"""WebSocket router - /ws/alerts?miner_id=&min_severity= endpoint."""

from typing import Optional

from fastapi import FastAPI, WebSocket

from poolcheck.records import AlertSeverity


def register(app: FastAPI):
    @app.websocket("/ws/alerts")
    async def alert_socket(ws: WebSocket, miner_id: Optional[str] = None, min_severity: str = "low"):
        manager = app.state.server.ws_manager
        try:
            severity = AlertSeverity(min_severity.lower())
        except ValueError:
            await ws.close(code=1008, reason=f"Unknown severity: {min_severity}")
            return
        if manager is None:
            await ws.close(code=1013, reason="Alert stream not ready")
            return
        await manager.handle_connection(ws, miner_id or None, severity)
