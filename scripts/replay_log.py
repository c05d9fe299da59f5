#!/usr/bin/env python3
"""
replay_log.py - Replay a captured miner debug log through the pool monitor.

Reads a log file (one ESP-IDF frame per line, as streamed by AxeOS/NerdOS),
registers a miner with the given pool configuration and feeds every line
through the monitoring pipeline. With --approve-first the outputs of the
first mining.notify in the file become the approved baseline, so any later
change in payout shows up as an alert.

Usage:
    python scripts/replay_log.py capture.log --pool-url solo.ckpool.org --pool-port 3333 \\
        --user bc1q...xyz.worker1 --approve-first
"""

import argparse
import asyncio
import logging
import sys
import time

from poolcheck.alert_stream import AlertStream
from poolcheck.approvals import PoolApprovalService
from poolcheck.coinbase import CoinbaseError, extract_outputs
from poolcheck.feeds import LineFeed
from poolcheck.logline import extract_stratum_message, is_mining_notify, parse_log_line
from poolcheck.monitor import PoolMonitoringService
from poolcheck.records import MinerRecord, PoolApproval, PoolIdentity
from poolcheck.storage import StorageManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("replay")


def first_notify_outputs(lines):
    for raw in lines:
        entry = parse_log_line(raw)
        if entry is None or not is_mining_notify(entry):
            continue
        message = extract_stratum_message(entry)
        params = message.mining_notify_params if message else None
        if params is None:
            continue
        try:
            return extract_outputs(params)
        except CoinbaseError as e:
            logger.warning("Skipping undecodable job %s: %s", params.job_id, e)
    return None


async def replay(args) -> int:
    with open(args.logfile, encoding="utf-8", errors="replace") as f:
        lines = [line.rstrip("\n") for line in f]
    logger.info("Loaded %d lines from %s", len(lines), args.logfile)

    storage = StorageManager(args.db_path)
    await storage.initialize()
    try:
        await storage.miners.upsert(MinerRecord(
            miner_id=args.miner_id,
            hostname=args.miner_id,
            ip_address="",
            stratum_url=args.pool_url,
            stratum_port=args.pool_port,
            stratum_user=args.user,
        ))
        approvals = PoolApprovalService(storage.approvals, storage.alerts)
        identity = PoolIdentity.from_stratum_user(args.pool_url, args.pool_port, args.user)

        if args.approve_first:
            outputs = first_notify_outputs(lines)
            if not outputs:
                logger.error("No decodable mining.notify found, nothing to approve")
                return 1
            await approvals.save_approval(PoolApproval(
                identity=identity,
                approved_outputs=outputs,
                verified_at=time.time(),
                verified_by_miner_id=args.miner_id,
                verification_notes=f"Baseline from {args.logfile}",
            ))
            for o in outputs:
                logger.info("  baseline #%d %-62s %.8f BTC (%s)",
                            o.output_index, o.address, o.value_btc, o.script_type.display_name)
        elif await approvals.find_approval(identity) is None:
            logger.error("Pool %s has no approval; use --approve-first", identity.identifier)
            return 1

        stream = AlertStream()
        monitor = PoolMonitoringService(
            storage.miners, storage.approvals, storage.alerts, stream,
            debounce_interval=args.debounce_ms / 1000,
        )
        await monitor.start()

        feed = LineFeed(args.miner_id, maxsize=len(lines) + 1)
        await monitor.subscribe_miner(args.miner_id, feed)
        accepted = feed.push_lines(lines)
        feed.close()
        # Let the listener drain the feed before flushing the batch.
        while monitor.is_subscribed(args.miner_id):
            await asyncio.sleep(0.01)
        await monitor.flush()
        await monitor.stop()

        status = monitor.status()
        logger.info("Replay done: %d log frames, %d jobs queued, %d verified, %d alerts",
                    accepted, status["events_queued"], status["verifications"], status["alerts_raised"])
        for alert in await approvals.get_active_alerts(args.miner_id):
            logger.warning("  %s alert at %.0f: %d outputs (expected %d)",
                           alert.severity.value, alert.detected_at,
                           len(alert.actual_outputs), len(alert.expected_outputs))
        return 2 if status["alerts_raised"] else 0
    finally:
        await storage.close()


def main():
    parser = argparse.ArgumentParser(description="Replay a miner log through the pool monitor")
    parser.add_argument("logfile", help="Captured miner debug log")
    parser.add_argument("--miner-id", default="replay", help="Miner id to record alerts under")
    parser.add_argument("--pool-url", required=True, help="Stratum pool host")
    parser.add_argument("--pool-port", type=int, required=True, help="Stratum pool port")
    parser.add_argument("--user", required=True, help="Stratum username (address.worker)")
    parser.add_argument("--db-path", default=":memory:", help="SQLite database path (default: in-memory)")
    parser.add_argument("--debounce-ms", type=int, default=50, help="Batch debounce in ms (default: 50)")
    parser.add_argument("--approve-first", action="store_true",
                        help="Approve the outputs of the first mining.notify in the log")
    args = parser.parse_args()
    sys.exit(asyncio.run(replay(args)))


if __name__ == "__main__":
    main()
