"""
monitor.py - Pool output monitoring service.

Listens to per-miner log streams, decodes every mining.notify into the
coinbase payout outputs and checks them against the approved baseline of
the miner's active pool. Decoded jobs are queued and validated in debounced
batches: a miner fleet receives the same job from a pool within a few
milliseconds, so one batch costs one approval read and one throttle read
per pool instead of one per miner.

Debounce uses a generation counter. Every enqueue bumps the generation and
schedules a timer tagged with it; a timer that wakes up to a newer
generation does nothing. Timers are never cancelled to reschedule.
"""

import asyncio
import logging
import time
import uuid
from typing import TYPE_CHECKING, AsyncIterable, Dict, List, Optional, Set, Tuple

from poolcheck.coinbase import CoinbaseError, extract_outputs
from poolcheck.comparator import classify_severity, compare_outputs
from poolcheck.logline import LogEntry, extract_stratum_message, is_mining_notify
from poolcheck.records import (
    MinerRecord,
    PendingValidationEvent,
    PoolAlertEvent,
    PoolIdentity,
    VerificationEvent,
)

if TYPE_CHECKING:
    from poolcheck.alert_stream import AlertStream
    from poolcheck.storage import AlertRepo, ApprovalRepo, MinerRepo

logger = logging.getLogger("monitor")

DEBOUNCE_INTERVAL = 0.5  # seconds
THROTTLE_WINDOW = 24 * 3600  # seconds, one alert per (miner, pool)
RECENT_ALERT_LIMIT = 100


class PoolMonitoringService:
    """Validates live coinbase outputs against approved pool baselines."""

    def __init__(
        self,
        miner_repo: "MinerRepo",
        approval_repo: "ApprovalRepo",
        alert_repo: "AlertRepo",
        stream: "AlertStream",
        clock=time.time,
        debounce_interval: float = DEBOUNCE_INTERVAL,
        throttle_window: float = THROTTLE_WINDOW,
    ):
        self._miners = miner_repo
        self._approvals = approval_repo
        self._alerts = alert_repo
        self._stream = stream
        self._clock = clock
        self.debounce_interval = debounce_interval
        self.throttle_window = throttle_window

        self._running = False
        self._listeners: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._pending: List[PendingValidationEvent] = []
        self._generation = 0
        self._timers: Set[asyncio.Task] = set()

        self.events_queued = 0
        self.batches_processed = 0
        self.alerts_raised = 0
        self.verifications = 0

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        self._running = True
        logger.info(
            "Pool monitoring started (debounce %.0fms, throttle %.1fh)",
            self.debounce_interval * 1000, self.throttle_window / 3600,
        )

    async def stop(self):
        """Cancel every listener and discard queued events."""
        self._running = False

        listeners = list(self._listeners.values())
        self._listeners.clear()
        for task in listeners:
            task.cancel()
        if listeners:
            await asyncio.gather(*listeners, return_exceptions=True)

        async with self._lock:
            self._generation += 1
            dropped = len(self._pending)
            self._pending = []

        timers = list(self._timers)
        for task in timers:
            task.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

        logger.info("Pool monitoring stopped (%d queued events discarded)", dropped)

    # -------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------

    @property
    def subscribed_miner_count(self) -> int:
        return len(self._listeners)

    def is_subscribed(self, miner_id: str) -> bool:
        return miner_id in self._listeners

    def subscribed_miners(self) -> List[str]:
        return sorted(self._listeners)

    async def subscribe_miner(self, miner_id: str, source: AsyncIterable[LogEntry]) -> bool:
        """Start listening to a miner's log stream. No-op if already subscribed."""
        if not self._running:
            logger.warning("Cannot subscribe %s: monitoring is not running", miner_id)
            return False
        if miner_id in self._listeners:
            return False
        self._listeners[miner_id] = asyncio.create_task(self._listen(miner_id, source))
        logger.info("Subscribed to miner %s", miner_id)
        return True

    async def subscribe_if_pool_approved(self, miner_id: str, source: AsyncIterable[LogEntry]) -> bool:
        """Subscribe only when the miner's active pool has an approved baseline."""
        miner = await self._miners.get(miner_id)
        if miner is None:
            logger.warning("Cannot subscribe unknown miner %s", miner_id)
            return False
        identity = miner.active_pool_identity()
        if await self._approvals.find(identity) is None:
            logger.info("Pool %s not approved, not monitoring miner %s", identity.identifier, miner_id)
            return False
        return await self.subscribe_miner(miner_id, source)

    async def unsubscribe_miner(self, miner_id: str) -> bool:
        """Stop listening to a miner. Events already queued are still validated."""
        task = self._listeners.pop(miner_id, None)
        if task is None:
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Unsubscribed from miner %s", miner_id)
        return True

    async def _listen(self, miner_id: str, source: AsyncIterable[LogEntry]):
        try:
            async for entry in source:
                try:
                    await self.ingest(miner_id, entry)
                except Exception:
                    logger.exception("Dropping log line from miner %s", miner_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Log stream for miner %s failed", miner_id)
        finally:
            if self._listeners.get(miner_id) is asyncio.current_task():
                del self._listeners[miner_id]

    # -------------------------------------------------------------------
    # Intake
    # -------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def ingest(self, miner_id: str, entry: LogEntry) -> bool:
        """Decode one log entry and queue it. Returns True if a job was queued."""
        if not self._running:
            return False
        if not is_mining_notify(entry):
            return False

        message = extract_stratum_message(entry)
        if message is None:
            logger.debug("Undecodable stratum payload from %s", miner_id)
            return False
        params = message.mining_notify_params
        if params is None:
            return False

        try:
            outputs = extract_outputs(params)
        except CoinbaseError as e:
            logger.warning("Failed to extract coinbase outputs for miner %s (job %s): %s",
                           miner_id, params.job_id, e)
            return False

        await self._enqueue(PendingValidationEvent(
            miner_id=miner_id,
            outputs=outputs,
            raw_text=entry.raw_text,
            timestamp=self._clock(),
        ))
        return True

    async def _enqueue(self, event: PendingValidationEvent):
        async with self._lock:
            self._pending.append(event)
            self._generation += 1
            generation = self._generation
        self.events_queued += 1

        timer = asyncio.create_task(self._debounce(generation))
        self._timers.add(timer)
        timer.add_done_callback(self._timers.discard)

    async def _debounce(self, generation: int):
        await asyncio.sleep(self.debounce_interval)
        async with self._lock:
            if generation != self._generation:
                return
            batch = self._pending
            self._pending = []
        # Past this point stop() must not abort the batch.
        self._timers.discard(asyncio.current_task())
        await self._process_batch(batch)

    async def flush(self) -> List[PoolAlertEvent]:
        """Validate everything queued now, without waiting for the debounce timer."""
        async with self._lock:
            self._generation += 1
            batch = self._pending
            self._pending = []
        return await self._process_batch(batch)

    # -------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------

    async def _process_batch(self, events: List[PendingValidationEvent]) -> List[PoolAlertEvent]:
        if not events:
            return []
        self.batches_processed += 1

        by_pool: Dict[PoolIdentity, List[Tuple[PendingValidationEvent, MinerRecord]]] = {}
        for event in events:
            try:
                miner = await self._miners.get(event.miner_id)
            except Exception:
                logger.exception("Failed to load miner %s", event.miner_id)
                continue
            if miner is None:
                logger.warning("Dropping event for unknown miner %s", event.miner_id)
                continue
            by_pool.setdefault(miner.active_pool_identity(), []).append((event, miner))

        alerts = []
        for identity, group in by_pool.items():
            try:
                alerts.extend(await self._process_pool(identity, group))
            except Exception:
                logger.exception("Failed to validate %d events for pool %s",
                                 len(group), identity.identifier)
        return alerts

    async def _process_pool(
        self,
        identity: PoolIdentity,
        group: List[Tuple[PendingValidationEvent, MinerRecord]],
    ) -> List[PoolAlertEvent]:
        approval = await self._approvals.find(identity)
        if approval is None:
            logger.info("No approval for pool %s, skipping %d events", identity.identifier, len(group))
            return []

        since = self._clock() - self.throttle_window
        throttled = await self._alerts.recently_alerted_miners(identity, since, RECENT_ALERT_LIMIT)

        alerts = []
        for event, miner in group:
            if event.miner_id in throttled:
                logger.debug("Miner %s already alerted for %s, skipping", event.miner_id, identity.identifier)
                continue

            result = compare_outputs(event.outputs, approval.approved_outputs)
            if result.matches:
                self.verifications += 1
                logger.info("Pool outputs verified for miner %s on %s", miner.hostname or miner.miner_id,
                            identity.identifier)
                await self._stream.publish_verification(VerificationEvent(
                    miner_id=event.miner_id,
                    pool_identity=identity,
                    timestamp=self._clock(),
                    output_count=len(event.outputs),
                ))
                continue

            severity = classify_severity(event.outputs, approval.approved_outputs)
            logger.warning("Pool output mismatch for miner %s on %s: %s (severity=%s)",
                           miner.hostname or miner.miner_id, identity.identifier,
                           result.reason, severity.value)

            alert = PoolAlertEvent(
                id=uuid.uuid4().hex,
                detected_at=self._clock(),
                miner_id=miner.miner_id,
                miner_hostname=miner.hostname,
                miner_ip=miner.ip_address,
                pool_identity=identity,
                stratum_user=miner.active_stratum_user(),
                is_using_fallback_pool=miner.is_using_fallback,
                expected_outputs=list(approval.approved_outputs),
                actual_outputs=list(event.outputs),
                severity=severity,
                raw_message=event.raw_text,
            )
            await self._alerts.create(alert)
            throttled.add(event.miner_id)
            self.alerts_raised += 1
            alerts.append(alert)
            await self._stream.publish_alert(alert)
        return alerts

    def status(self) -> dict:
        return {
            "running": self._running,
            "subscribed_miners": self.subscribed_miner_count,
            "pending_events": self.pending_count,
            "events_queued": self.events_queued,
            "batches_processed": self.batches_processed,
            "alerts_raised": self.alerts_raised,
            "verifications": self.verifications,
            "debounce_interval": self.debounce_interval,
            "throttle_window": self.throttle_window,
        }
