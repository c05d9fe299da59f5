import time
from typing import List, Optional

import aiosqlite

from poolcheck.records import MinerRecord

_MINER_COLUMNS = (
    "miner_id, hostname, ip_address, stratum_url, stratum_port, stratum_user, "
    "fallback_stratum_url, fallback_stratum_port, fallback_stratum_user, is_using_fallback"
)


def _row_to_miner(row) -> MinerRecord:
    return MinerRecord(
        miner_id=row[0],
        hostname=row[1],
        ip_address=row[2],
        stratum_url=row[3],
        stratum_port=row[4],
        stratum_user=row[5],
        fallback_stratum_url=row[6],
        fallback_stratum_port=row[7],
        fallback_stratum_user=row[8],
        is_using_fallback=bool(row[9]),
    )


class MinerRepo:
    """Last known pool configuration per miner."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def upsert(self, miner: MinerRecord) -> MinerRecord:
        await self._db.execute(
            f"INSERT INTO miners ({_MINER_COLUMNS}, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(miner_id) DO UPDATE SET "
            "hostname=excluded.hostname, ip_address=excluded.ip_address, "
            "stratum_url=excluded.stratum_url, stratum_port=excluded.stratum_port, "
            "stratum_user=excluded.stratum_user, fallback_stratum_url=excluded.fallback_stratum_url, "
            "fallback_stratum_port=excluded.fallback_stratum_port, "
            "fallback_stratum_user=excluded.fallback_stratum_user, "
            "is_using_fallback=excluded.is_using_fallback, updated_at=excluded.updated_at",
            (
                miner.miner_id, miner.hostname, miner.ip_address,
                miner.stratum_url, miner.stratum_port, miner.stratum_user,
                miner.fallback_stratum_url, miner.fallback_stratum_port, miner.fallback_stratum_user,
                int(miner.is_using_fallback), time.time(),
            ),
        )
        await self._db.commit()
        return await self.get(miner.miner_id)

    async def get(self, miner_id: str) -> Optional[MinerRecord]:
        async with self._db.execute(
            f"SELECT {_MINER_COLUMNS} FROM miners WHERE miner_id = ?",
            (miner_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_miner(row)

    async def set_fallback(self, miner_id: str, is_using_fallback: bool) -> bool:
        cursor = await self._db.execute(
            "UPDATE miners SET is_using_fallback = ?, updated_at = ? WHERE miner_id = ?",
            (int(is_using_fallback), time.time(), miner_id),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def delete(self, miner_id: str) -> bool:
        cursor = await self._db.execute("DELETE FROM miners WHERE miner_id = ?", (miner_id,))
        await self._db.commit()
        return cursor.rowcount > 0

    async def list_all(self) -> List[MinerRecord]:
        results = []
        async with self._db.execute(
            f"SELECT {_MINER_COLUMNS} FROM miners ORDER BY miner_id"
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_miner(row))
        return results
