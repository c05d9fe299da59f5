"""Versioned schema migrations for the pool monitor database."""

import logging
import time
from typing import Dict

import aiosqlite

from ._schema import SCHEMA_SQL, SCHEMA_VERSION

logger = logging.getLogger("storage")

# version -> script bringing the database from version-1 to version
MIGRATIONS: Dict[int, str] = {
    1: SCHEMA_SQL,
}


async def get_schema_version(db: aiosqlite.Connection) -> int:
    """Highest applied version, 0 for a database that has never been migrated."""
    async with db.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
    ) as cursor:
        if await cursor.fetchone() is None:
            return 0
    async with db.execute("SELECT MAX(version) FROM schema_version") as cursor:
        row = await cursor.fetchone()
    return row[0] or 0


async def run_migrations(db: aiosqlite.Connection, log: logging.Logger = logger) -> int:
    """Apply every pending migration in order. Returns the resulting version."""
    current = await get_schema_version(db)
    if current > SCHEMA_VERSION:
        raise RuntimeError(
            f"Database schema v{current} is newer than this build supports (v{SCHEMA_VERSION})"
        )

    for version in range(current + 1, SCHEMA_VERSION + 1):
        log.info("Applying schema migration v%d", version)
        await db.executescript(MIGRATIONS[version])
        await db.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (version, time.time()),
        )
        await db.commit()

    if current == SCHEMA_VERSION:
        log.debug("Schema up to date (v%d)", current)
    return SCHEMA_VERSION
