import json
from typing import List, Optional, Set

import aiosqlite

from poolcheck.records import AlertSeverity, PoolAlertEvent, PoolIdentity, outputs_from_dicts, outputs_to_dicts

DEFAULT_ALERT_LIMIT = 100

_ALERT_COLUMNS = (
    "id, detected_at, miner_id, miner_hostname, miner_ip, pool_url, pool_port, "
    "stratum_user_base, stratum_user, is_using_fallback_pool, expected_outputs, "
    "actual_outputs, severity, is_dismissed, dismissed_at, dismissal_notes, raw_message"
)


def _row_to_alert(row) -> PoolAlertEvent:
    return PoolAlertEvent(
        id=row[0],
        detected_at=row[1],
        miner_id=row[2],
        miner_hostname=row[3],
        miner_ip=row[4],
        pool_identity=PoolIdentity(row[5], row[6], row[7]),
        stratum_user=row[8],
        is_using_fallback_pool=bool(row[9]),
        expected_outputs=outputs_from_dicts(json.loads(row[10])),
        actual_outputs=outputs_from_dicts(json.loads(row[11])),
        severity=AlertSeverity(row[12]),
        is_dismissed=bool(row[13]),
        dismissed_at=row[14],
        dismissal_notes=row[15],
        raw_message=row[16],
    )


class AlertRepo:
    """Append-only alert history. Only the dismissal columns are ever updated."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def create(self, alert: PoolAlertEvent) -> PoolAlertEvent:
        identity = alert.pool_identity
        await self._db.execute(
            f"INSERT INTO pool_alerts ({_ALERT_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                alert.id, alert.detected_at, alert.miner_id, alert.miner_hostname, alert.miner_ip,
                identity.pool_url, identity.pool_port, identity.stratum_user_base,
                alert.stratum_user, int(alert.is_using_fallback_pool),
                json.dumps(outputs_to_dicts(alert.expected_outputs)),
                json.dumps(outputs_to_dicts(alert.actual_outputs)),
                alert.severity.value, int(alert.is_dismissed),
                alert.dismissed_at, alert.dismissal_notes, alert.raw_message,
            ),
        )
        await self._db.commit()
        return alert

    async def get(self, alert_id: str) -> Optional[PoolAlertEvent]:
        async with self._db.execute(
            f"SELECT {_ALERT_COLUMNS} FROM pool_alerts WHERE id = ?",
            (alert_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_alert(row)

    async def recently_alerted_miners(
        self, identity: PoolIdentity, since: float, limit: int = DEFAULT_ALERT_LIMIT
    ) -> Set[str]:
        """Miner ids with an alert for this pool detected at or after ``since``."""
        miners = set()
        async with self._db.execute(
            "SELECT miner_id FROM pool_alerts "
            "WHERE pool_url = ? AND pool_port = ? AND stratum_user_base = ? AND detected_at >= ? "
            "ORDER BY detected_at DESC LIMIT ?",
            (identity.pool_url, identity.pool_port, identity.stratum_user_base, since, limit),
        ) as cursor:
            async for row in cursor:
                miners.add(row[0])
        return miners

    async def list_active(self, miner_id: Optional[str] = None) -> List[PoolAlertEvent]:
        query = f"SELECT {_ALERT_COLUMNS} FROM pool_alerts WHERE is_dismissed = 0"
        params: list = []
        if miner_id is not None:
            query += " AND miner_id = ?"
            params.append(miner_id)
        query += " ORDER BY detected_at DESC"
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append(_row_to_alert(row))
        return results

    async def list_all(
        self, miner_id: Optional[str] = None, limit: int = DEFAULT_ALERT_LIMIT
    ) -> List[PoolAlertEvent]:
        query = f"SELECT {_ALERT_COLUMNS} FROM pool_alerts"
        params: list = []
        if miner_id is not None:
            query += " WHERE miner_id = ?"
            params.append(miner_id)
        query += " ORDER BY detected_at DESC LIMIT ?"
        params.append(limit)
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append(_row_to_alert(row))
        return results

    async def dismiss(self, alert_id: str, notes: Optional[str], at: float) -> bool:
        cursor = await self._db.execute(
            "UPDATE pool_alerts SET is_dismissed = 1, dismissed_at = ?, dismissal_notes = ? "
            "WHERE id = ?",
            (at, notes, alert_id),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def delete_dismissed_before(self, cutoff: float) -> int:
        cursor = await self._db.execute(
            "DELETE FROM pool_alerts WHERE is_dismissed = 1 AND detected_at < ?",
            (cutoff,),
        )
        await self._db.commit()
        return cursor.rowcount

    async def count_active(self) -> int:
        async with self._db.execute(
            "SELECT COUNT(*) FROM pool_alerts WHERE is_dismissed = 0"
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
