"""
server.py - Pool monitor server entry point.

One process hosts the whole monitor:
 - approvals, miners and alerts in SQLite (StorageManager)
 - PoolMonitoringService validating coinbase outputs in debounced batches
 - per-miner LineFeeds that collectors push raw log lines into over HTTP
 - the REST API and the /ws/alerts socket (FastAPI on uvicorn, port 8090)

Usage:
    poolcheck-server [--api-port 8090] [--db-path data/poolcheck.db] [--debounce-ms 500]
    python -m poolcheck.server [--api-port 8090] [--db-path data/poolcheck.db]
"""

import argparse
import asyncio
import logging
import os
from typing import Optional

import uvicorn
from fastapi import FastAPI

from poolcheck import __version__
from poolcheck.alert_stream import AlertStream
from poolcheck.approvals import PoolApprovalService
from poolcheck.feeds import FeedRegistry
from poolcheck.monitor import DEBOUNCE_INTERVAL, THROTTLE_WINDOW, PoolMonitoringService
from poolcheck.records import PoolAlertEvent
from poolcheck.routers import register_all_routers
from poolcheck.storage import StorageManager
from poolcheck.ws import AlertWSManager

LOG_FORMAT = "%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s"

logger = logging.getLogger("server")


class MonitorServer:
    """Composition root: storage, monitoring service, feeds and the REST API."""

    def __init__(
        self,
        api_port: int = 8090,
        db_path: str = "data/poolcheck.db",
        debounce_interval: float = DEBOUNCE_INTERVAL,
        throttle_window: float = THROTTLE_WINDOW,
    ):
        self.api_port = api_port
        self.db_path = db_path
        self.debounce_interval = debounce_interval
        self.throttle_window = throttle_window

        self.stream = AlertStream()
        self.feeds = FeedRegistry()

        # Set by _init_services() once an event loop is running
        self.storage: Optional[StorageManager] = None
        self.approvals: Optional[PoolApprovalService] = None
        self.monitor: Optional[PoolMonitoringService] = None
        self.ws_manager: Optional[AlertWSManager] = None
        self._uvicorn_server: Optional[uvicorn.Server] = None

        self.app = FastAPI(title="Pool Output Monitor", version=__version__)
        self.app.state.server = self
        register_all_routers(self.app)

        self.stream.on_alert(self._log_alert)

    async def _init_services(self):
        """Open storage, build the services and start monitoring."""
        if self.db_path != ":memory:":
            db_dir = os.path.dirname(self.db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

        self.storage = StorageManager(self.db_path)
        await self.storage.initialize()

        self.approvals = PoolApprovalService(self.storage.approvals, self.storage.alerts)
        self.monitor = PoolMonitoringService(
            self.storage.miners,
            self.storage.approvals,
            self.storage.alerts,
            self.stream,
            debounce_interval=self.debounce_interval,
            throttle_window=self.throttle_window,
        )
        self.ws_manager = AlertWSManager(self.storage.alerts)
        self.ws_manager.attach(self.stream)

        await self.monitor.start()
        logger.info("Monitor ready (db=%s, %d approved pools)", self.db_path,
                    len(await self.approvals.list_approvals()))

    async def _close_services(self):
        self.feeds.close_all()
        if self.monitor:
            await self.monitor.stop()
        if self.storage:
            await self.storage.close()

    async def _log_alert(self, alert: PoolAlertEvent):
        logger.warning(
            "ALERT [%s] miner=%s pool=%s expected=%d outputs actual=%d outputs",
            alert.severity.value.upper(), alert.miner_id, alert.pool_identity.identifier,
            len(alert.expected_outputs), len(alert.actual_outputs),
        )

    # -------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------

    async def start(self):
        """Start storage, monitoring, and the API server."""
        await self._init_services()

        config = uvicorn.Config(
            self.app,
            host="0.0.0.0",
            port=self.api_port,
            log_level="info",
        )
        self._uvicorn_server = uvicorn.Server(config)
        logger.info("REST API starting on port %d", self.api_port)
        try:
            await self._uvicorn_server.serve()
        finally:
            await self._close_services()

    async def stop(self):
        """Ask the API server to exit; services are closed once it returns."""
        if self._uvicorn_server:
            self._uvicorn_server.should_exit = True


def main():
    """CLI entry point for the pool monitor server."""
    parser = argparse.ArgumentParser(description="Pool output verification server")
    parser.add_argument("--api-port", type=int, default=8090, help="REST API port (default: 8090)")
    parser.add_argument("--db-path", default="data/poolcheck.db", help="SQLite database path (default: data/poolcheck.db)")
    parser.add_argument("--debounce-ms", type=int, default=int(DEBOUNCE_INTERVAL * 1000),
                        help="Batch debounce interval in milliseconds (default: 500)")
    parser.add_argument("--throttle-hours", type=float, default=THROTTLE_WINDOW / 3600,
                        help="Suppress repeat alerts per miner and pool for this long (default: 24)")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level (default: INFO)")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )

    server = MonitorServer(
        api_port=args.api_port,
        db_path=args.db_path,
        debounce_interval=args.debounce_ms / 1000,
        throttle_window=args.throttle_hours * 3600,
    )

    logger.info("=" * 60)
    logger.info("  Pool Output Monitor %s", __version__)
    logger.info("  REST API:   http://localhost:%d", args.api_port)
    logger.info("  Alerts WS:  ws://localhost:%d/ws/alerts", args.api_port)
    logger.info("  Database:   %s", args.db_path)
    logger.info("  Debounce:   %d ms", args.debounce_ms)
    logger.info("  Throttle:   %.1f h", args.throttle_hours)
    logger.info("=" * 60)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
