"""
approvals.py - Pool approval and alert history management.

Approvals are the trusted payout baselines a pool's live coinbase outputs
are compared against. Alerts are kept until dismissed; dismissed alerts are
purged after a retention period.
"""

import logging
import time
from typing import TYPE_CHECKING, List, Optional

from poolcheck.records import BitcoinOutput, PoolAlertEvent, PoolApproval, PoolIdentity

if TYPE_CHECKING:
    from poolcheck.storage import AlertRepo, ApprovalRepo

logger = logging.getLogger("approvals")

ALERT_RETENTION_DAYS = 90
DEFAULT_ALERT_LIMIT = 100


class PoolApprovalService:
    def __init__(self, approval_repo: "ApprovalRepo", alert_repo: "AlertRepo", clock=time.time):
        self._approvals = approval_repo
        self._alerts = alert_repo
        self._clock = clock

    # -------------------------------------------------------------------
    # Approvals
    # -------------------------------------------------------------------

    async def save_approval(self, approval: PoolApproval) -> PoolApproval:
        saved = await self._approvals.upsert(approval)
        logger.info("Saved pool approval for %s (%d outputs)",
                    approval.identity.identifier, len(approval.approved_outputs))
        return saved

    async def find_approval(self, identity: PoolIdentity) -> Optional[PoolApproval]:
        return await self._approvals.find(identity)

    async def find_approval_for_stratum_user(
        self, pool_url: str, pool_port: int, stratum_user: str
    ) -> Optional[PoolApproval]:
        return await self._approvals.find(PoolIdentity.from_stratum_user(pool_url, pool_port, stratum_user))

    async def list_approvals(self) -> List[PoolApproval]:
        return await self._approvals.list_all()

    async def delete_approval(self, identity: PoolIdentity) -> bool:
        deleted = await self._approvals.delete(identity)
        if deleted:
            logger.info("Deleted pool approval for %s", identity.identifier)
        return deleted

    async def update_approval(
        self,
        identity: PoolIdentity,
        outputs: List[BitcoinOutput],
        notes: Optional[str] = None,
    ) -> PoolApproval:
        """Replace the baseline outputs of an existing approval."""
        existing = await self._approvals.find(identity)
        if existing is None:
            raise KeyError(f"No approval for pool {identity.identifier}")
        existing.approved_outputs = list(outputs)
        existing.verified_at = self._clock()
        if notes is not None:
            existing.verification_notes = notes
        return await self.save_approval(existing)

    async def auto_approve(
        self,
        pool_url: str,
        pool_port: int,
        stratum_user: str,
        outputs: List[BitcoinOutput],
        miner_id: Optional[str] = None,
    ) -> Optional[PoolApproval]:
        """Approve a solo pool paying its single output to the miner's own address."""
        identity = PoolIdentity.from_stratum_user(pool_url, pool_port, stratum_user)
        if not PoolApproval.can_auto_approve(identity.stratum_user_base, outputs):
            return None
        approval = PoolApproval(
            identity=identity,
            approved_outputs=list(outputs),
            verified_at=self._clock(),
            verified_by_miner_id=miner_id,
            verification_notes="Auto-approved: single output to miner address",
            is_auto_approved=True,
        )
        return await self.save_approval(approval)

    # -------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------

    async def get_active_alerts(self, miner_id: Optional[str] = None) -> List[PoolAlertEvent]:
        return await self._alerts.list_active(miner_id)

    async def get_all_alerts(
        self, miner_id: Optional[str] = None, limit: int = DEFAULT_ALERT_LIMIT
    ) -> List[PoolAlertEvent]:
        return await self._alerts.list_all(miner_id, limit)

    async def dismiss_alert(self, alert_id: str, notes: Optional[str] = None) -> PoolAlertEvent:
        if not await self._alerts.dismiss(alert_id, notes, self._clock()):
            raise KeyError(f"Alert {alert_id} not found")
        logger.info("Dismissed alert %s", alert_id)
        return await self._alerts.get(alert_id)

    async def cleanup_old_alerts(self, older_than_days: int = ALERT_RETENTION_DAYS) -> int:
        if older_than_days < 0:
            raise ValueError("older_than_days must be non-negative")
        cutoff = self._clock() - older_than_days * 86400
        removed = await self._alerts.delete_dismissed_before(cutoff)
        if removed:
            logger.info("Removed %d dismissed alerts older than %d days", removed, older_than_days)
        return removed
