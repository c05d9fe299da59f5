import json
from typing import List, Optional

import aiosqlite

from poolcheck.records import PoolApproval, PoolIdentity, outputs_from_dicts, outputs_to_dicts

_APPROVAL_COLUMNS = (
    "pool_url, pool_port, stratum_user_base, approved_outputs, verified_at, "
    "verified_by_miner_id, verification_notes, is_auto_approved"
)


def _row_to_approval(row) -> PoolApproval:
    return PoolApproval(
        identity=PoolIdentity(row[0], row[1], row[2]),
        approved_outputs=outputs_from_dicts(json.loads(row[3])),
        verified_at=row[4],
        verified_by_miner_id=row[5],
        verification_notes=row[6],
        is_auto_approved=bool(row[7]),
    )


class ApprovalRepo:
    """Approved payout baselines, at most one per pool identity."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def find(self, identity: PoolIdentity) -> Optional[PoolApproval]:
        async with self._db.execute(
            f"SELECT {_APPROVAL_COLUMNS} FROM pool_approvals "
            "WHERE pool_url = ? AND pool_port = ? AND stratum_user_base = ?",
            (identity.pool_url, identity.pool_port, identity.stratum_user_base),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_approval(row)

    async def upsert(self, approval: PoolApproval) -> PoolApproval:
        identity = approval.identity
        await self._db.execute(
            f"INSERT INTO pool_approvals ({_APPROVAL_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(pool_url, pool_port, stratum_user_base) DO UPDATE SET "
            "approved_outputs=excluded.approved_outputs, verified_at=excluded.verified_at, "
            "verified_by_miner_id=excluded.verified_by_miner_id, "
            "verification_notes=excluded.verification_notes, "
            "is_auto_approved=excluded.is_auto_approved",
            (
                identity.pool_url, identity.pool_port, identity.stratum_user_base,
                json.dumps(outputs_to_dicts(approval.approved_outputs)),
                approval.verified_at, approval.verified_by_miner_id,
                approval.verification_notes, int(approval.is_auto_approved),
            ),
        )
        await self._db.commit()
        return await self.find(identity)

    async def delete(self, identity: PoolIdentity) -> bool:
        cursor = await self._db.execute(
            "DELETE FROM pool_approvals WHERE pool_url = ? AND pool_port = ? AND stratum_user_base = ?",
            (identity.pool_url, identity.pool_port, identity.stratum_user_base),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def list_all(self) -> List[PoolApproval]:
        results = []
        async with self._db.execute(
            f"SELECT {_APPROVAL_COLUMNS} FROM pool_approvals ORDER BY verified_at DESC"
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_approval(row))
        return results
