"""
ws.py - WebSocket fan-out of pool alerts and verifications.

Each client may narrow what it receives to one miner and/or a minimum
severity. On connect a client gets a snapshot of the active alerts that pass
its filter; afterwards every published alert or verification that passes is
pushed as ``{"type": ..., "data": ..., "ts": ...}``. A client sending
``"ping"`` gets a ``pong`` back.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional

from fastapi import WebSocket, WebSocketDisconnect

from poolcheck.records import AlertSeverity, PoolAlertEvent, VerificationEvent

if TYPE_CHECKING:
    from poolcheck.alert_stream import AlertStream
    from poolcheck.storage import AlertRepo

logger = logging.getLogger("ws")

MAX_WS_CLIENTS = 200
SEND_TIMEOUT = 2.0


@dataclass(eq=False)
class AlertClient:
    ws: WebSocket
    miner_id: Optional[str] = None
    min_severity: AlertSeverity = AlertSeverity.LOW

    def wants_alert(self, alert: PoolAlertEvent) -> bool:
        if self.miner_id and alert.miner_id != self.miner_id:
            return False
        return alert.severity.rank >= self.min_severity.rank

    def wants_miner(self, miner_id: str) -> bool:
        return not self.miner_id or self.miner_id == miner_id


def _envelope(event_type: str, data: Any) -> str:
    return json.dumps({"type": event_type, "data": data, "ts": time.time()})


class AlertWSManager:
    def __init__(self, alert_repo: "AlertRepo"):
        self._alerts = alert_repo
        self._clients: List[AlertClient] = []
        self._lock = asyncio.Lock()

    def attach(self, stream: "AlertStream"):
        """Relay everything published on ``stream`` to connected clients."""
        stream.on_alert(self._on_alert)
        stream.on_verification(self._on_verification)

    @property
    def client_count(self) -> int:
        return len(self._clients)

    # -------------------------------------------------------------------
    # Client bookkeeping
    # -------------------------------------------------------------------

    async def connect(
        self,
        ws: WebSocket,
        miner_id: Optional[str] = None,
        min_severity: AlertSeverity = AlertSeverity.LOW,
    ) -> Optional[AlertClient]:
        await ws.accept()
        client = AlertClient(ws, miner_id, min_severity)
        async with self._lock:
            if len(self._clients) >= MAX_WS_CLIENTS:
                logger.warning("Alert socket limit reached (%d), refusing client", MAX_WS_CLIENTS)
                await ws.close(code=1013, reason="Too many alert clients")
                return None
            self._clients.append(client)
            total = len(self._clients)
        logger.info("Alert client connected (miner=%s, min_severity=%s, %d total)",
                    miner_id or "*", min_severity.value, total)
        await self._send_snapshot(client)
        return client

    async def disconnect(self, client: AlertClient):
        async with self._lock:
            if client in self._clients:
                self._clients.remove(client)
            total = len(self._clients)
        logger.info("Alert client disconnected (%d total)", total)

    # -------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------

    async def broadcast(self, event_type: str, data: Any):
        """Send to every client regardless of its filter."""
        async with self._lock:
            clients = list(self._clients)
        await self._deliver(clients, _envelope(event_type, data))

    async def _deliver(self, clients: List[AlertClient], msg: str):
        if not clients:
            return
        results = await asyncio.gather(*(self._try_send(c, msg) for c in clients))
        dead = [c for c, ok in zip(clients, results) if not ok]
        if dead:
            async with self._lock:
                self._clients = [c for c in self._clients if c not in dead]
            logger.info("Dropped %d unresponsive alert clients", len(dead))

    async def _try_send(self, client: AlertClient, msg: str) -> bool:
        try:
            await asyncio.wait_for(client.ws.send_text(msg), timeout=SEND_TIMEOUT)
        except Exception:
            return False
        return True

    async def _on_alert(self, alert: PoolAlertEvent):
        async with self._lock:
            targets = [c for c in self._clients if c.wants_alert(alert)]
        await self._deliver(targets, _envelope("pool_alert", alert.to_dict()))

    async def _on_verification(self, event: VerificationEvent):
        async with self._lock:
            targets = [c for c in self._clients if c.wants_miner(event.miner_id)]
        await self._deliver(targets, _envelope("pool_verified", {
            "miner_id": event.miner_id,
            "pool_identifier": event.pool_identity.identifier,
            "output_count": event.output_count,
            "timestamp": event.timestamp,
        }))

    async def _send_snapshot(self, client: AlertClient):
        try:
            active = await self._alerts.list_active(client.miner_id)
            alerts = [a.to_dict() for a in active if client.wants_alert(a)]
            await client.ws.send_text(_envelope("snapshot", {"active_alerts": alerts}))
        except Exception:
            logger.exception("Failed to send alert snapshot")

    # -------------------------------------------------------------------
    # Connection loop
    # -------------------------------------------------------------------

    async def handle_connection(
        self,
        ws: WebSocket,
        miner_id: Optional[str] = None,
        min_severity: AlertSeverity = AlertSeverity.LOW,
    ):
        client = await self.connect(ws, miner_id, min_severity)
        if client is None:
            return
        try:
            while True:
                text = await ws.receive_text()
                if text.strip() == "ping":
                    await ws.send_text(_envelope("pong", None))
        except WebSocketDisconnect:
            pass
        finally:
            await self.disconnect(client)
