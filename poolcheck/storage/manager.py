"""StorageManager: owns the SQLite connection and the three repositories."""

import logging
from typing import Optional

import aiosqlite

from ._migrate import run_migrations
from .alerts import AlertRepo
from .approvals import ApprovalRepo
from .miners import MinerRepo

logger = logging.getLogger("storage")


class StorageManager:
    def __init__(self, db_path: str = "poolcheck.db"):
        self.db_path = db_path
        self.schema_version = 0
        self._db: Optional[aiosqlite.Connection] = None
        self.miners: Optional[MinerRepo] = None
        self.approvals: Optional[ApprovalRepo] = None
        self.alerts: Optional[AlertRepo] = None

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def initialize(self):
        if self._db is not None:
            return
        db = await aiosqlite.connect(self.db_path)
        try:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA foreign_keys=ON")
            self.schema_version = await run_migrations(db)
        except Exception:
            await db.close()
            raise
        self._db = db
        self.miners = MinerRepo(db)
        self.approvals = ApprovalRepo(db)
        self.alerts = AlertRepo(db)
        logger.info("Opened %s (schema v%d)", self.db_path, self.schema_version)

    async def close(self):
        if self._db is None:
            return
        await self._db.close()
        self._db = None
        logger.info("Closed %s", self.db_path)
