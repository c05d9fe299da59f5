"""
test_storage.py - Unit tests for the aiosqlite repos.

Runs every repo against an in-memory database with the current schema.
"""

import time
import uuid

import aiosqlite
import pytest
import pytest_asyncio

from poolcheck.records import (
    AlertSeverity,
    BitcoinOutput,
    MinerRecord,
    PoolAlertEvent,
    PoolApproval,
    PoolIdentity,
    ScriptType,
)
from poolcheck.storage import (
    SCHEMA_SQL,
    SCHEMA_VERSION,
    AlertRepo,
    ApprovalRepo,
    MinerRepo,
    StorageManager,
)
from poolcheck.storage._migrate import get_schema_version, run_migrations

pytestmark = pytest.mark.asyncio

POOL = PoolIdentity("public-pool.io", 21496, "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
OTHER_POOL = PoolIdentity("solo.ckpool.org", 3333, "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
OUTPUTS = [
    BitcoinOutput("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4", 312_500_000, 0, ScriptType.P2WPKH),
    BitcoinOutput("OP_RETURN", 0, 1, ScriptType.OP_RETURN),
]


@pytest_asyncio.fixture
async def db():
    conn = await aiosqlite.connect(":memory:")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.executescript(SCHEMA_SQL)
    await conn.execute(
        "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
        (SCHEMA_VERSION, time.time()),
    )
    await conn.commit()
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def miners(db):
    return MinerRepo(db)


@pytest_asyncio.fixture
async def approvals(db):
    return ApprovalRepo(db)


@pytest_asyncio.fixture
async def alerts(db):
    return AlertRepo(db)


def _miner(miner_id="m1", **kw) -> MinerRecord:
    fields = dict(
        miner_id=miner_id, hostname=f"bitaxe-{miner_id}", ip_address="10.0.0.5",
        stratum_url=POOL.pool_url, stratum_port=POOL.pool_port,
        stratum_user=f"{POOL.stratum_user_base}.{miner_id}",
        fallback_stratum_url=OTHER_POOL.pool_url, fallback_stratum_port=OTHER_POOL.pool_port,
        fallback_stratum_user=f"{OTHER_POOL.stratum_user_base}.{miner_id}",
    )
    fields.update(kw)
    return MinerRecord(**fields)


def _alert(miner_id="m1", identity=POOL, detected_at=None, severity=AlertSeverity.HIGH) -> PoolAlertEvent:
    return PoolAlertEvent(
        id=uuid.uuid4().hex,
        detected_at=detected_at if detected_at is not None else time.time(),
        miner_id=miner_id,
        miner_hostname=f"bitaxe-{miner_id}",
        miner_ip="10.0.0.5",
        pool_identity=identity,
        stratum_user=f"{identity.stratum_user_base}.{miner_id}",
        is_using_fallback_pool=False,
        expected_outputs=OUTPUTS,
        actual_outputs=[BitcoinOutput("12ZEw5Hcv1hTb6YUQJ69y1V7uhcoDz92PH", 312_500_000, 0, ScriptType.P2PKH),
                        OUTPUTS[1]],
        severity=severity,
        raw_message="rx: {...}",
    )


# ── Migrations ────────────────────────────────────────────────────────────

class TestMigrations:

    async def test_manager_initializes_schema(self):
        sm = StorageManager(":memory:")
        await sm.initialize()
        try:
            assert await get_schema_version(sm._db) == SCHEMA_VERSION
            assert await sm.miners.list_all() == []
        finally:
            await sm.close()

    async def test_migrations_idempotent(self, db):
        await run_migrations(db)
        async with db.execute("SELECT COUNT(*) FROM schema_version") as cursor:
            row = await cursor.fetchone()
        assert row[0] == 1

    async def test_fresh_database_version_zero(self):
        conn = await aiosqlite.connect(":memory:")
        try:
            assert await get_schema_version(conn) == 0
        finally:
            await conn.close()

    async def test_newer_schema_refused(self, db):
        await db.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (SCHEMA_VERSION + 1, time.time()),
        )
        await db.commit()
        with pytest.raises(RuntimeError, match="newer"):
            await run_migrations(db)

    async def test_initialize_twice_keeps_connection(self):
        sm = StorageManager(":memory:")
        await sm.initialize()
        try:
            miners = sm.miners
            await sm.initialize()
            assert sm.miners is miners
            assert sm.is_open
            assert sm.schema_version == SCHEMA_VERSION
        finally:
            await sm.close()
        assert not sm.is_open


# ── MinerRepo ─────────────────────────────────────────────────────────────

class TestMinerRepo:

    async def test_upsert_and_get(self, miners):
        saved = await miners.upsert(_miner())
        assert saved == _miner()
        assert await miners.get("m1") == _miner()

    async def test_get_unknown(self, miners):
        assert await miners.get("nope") is None

    async def test_upsert_updates_pool(self, miners):
        await miners.upsert(_miner())
        await miners.upsert(_miner(stratum_url="evil-pool.io", stratum_port=1))
        miner = await miners.get("m1")
        assert miner.stratum_url == "evil-pool.io"
        assert miner.stratum_port == 1

    async def test_set_fallback(self, miners):
        await miners.upsert(_miner())
        assert await miners.set_fallback("m1", True)
        miner = await miners.get("m1")
        assert miner.is_using_fallback is True
        assert miner.active_pool_identity() == OTHER_POOL

    async def test_set_fallback_unknown(self, miners):
        assert not await miners.set_fallback("nope", True)

    async def test_list_and_delete(self, miners):
        await miners.upsert(_miner("m2"))
        await miners.upsert(_miner("m1"))
        assert [m.miner_id for m in await miners.list_all()] == ["m1", "m2"]
        assert await miners.delete("m1")
        assert not await miners.delete("m1")
        assert [m.miner_id for m in await miners.list_all()] == ["m2"]


# ── ApprovalRepo ──────────────────────────────────────────────────────────

class TestApprovalRepo:

    async def test_find_missing(self, approvals):
        assert await approvals.find(POOL) is None

    async def test_upsert_and_find(self, approvals):
        approval = PoolApproval(POOL, OUTPUTS, verified_at=1000.0, verified_by_miner_id="m1",
                                verification_notes="checked on mempool.space")
        saved = await approvals.upsert(approval)
        assert saved.identity == POOL
        assert saved.approved_outputs == OUTPUTS
        assert saved.verified_by_miner_id == "m1"
        assert saved.verification_notes == "checked on mempool.space"
        assert saved.is_auto_approved is False

    async def test_one_approval_per_identity(self, approvals):
        await approvals.upsert(PoolApproval(POOL, OUTPUTS, verified_at=1000.0))
        await approvals.upsert(PoolApproval(POOL, OUTPUTS[:1], verified_at=2000.0, is_auto_approved=True))
        listed = await approvals.list_all()
        assert len(listed) == 1
        assert listed[0].approved_outputs == OUTPUTS[:1]
        assert listed[0].verified_at == 2000.0
        assert listed[0].is_auto_approved is True

    async def test_identities_are_independent(self, approvals):
        await approvals.upsert(PoolApproval(POOL, OUTPUTS, verified_at=1.0))
        await approvals.upsert(PoolApproval(OTHER_POOL, OUTPUTS[:1], verified_at=2.0))
        assert (await approvals.find(POOL)).approved_outputs == OUTPUTS
        assert (await approvals.find(OTHER_POOL)).approved_outputs == OUTPUTS[:1]
        # newest first
        assert [a.identity for a in await approvals.list_all()] == [OTHER_POOL, POOL]

    async def test_delete(self, approvals):
        await approvals.upsert(PoolApproval(POOL, OUTPUTS, verified_at=1.0))
        assert await approvals.delete(POOL)
        assert not await approvals.delete(POOL)
        assert await approvals.find(POOL) is None

    async def test_legacy_outputs_without_script_type(self, db, approvals):
        await db.execute(
            "INSERT INTO pool_approvals (pool_url, pool_port, stratum_user_base, approved_outputs, verified_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (POOL.pool_url, POOL.pool_port, POOL.stratum_user_base,
             '[{"address": "1abc", "value_satoshis": 10, "output_index": 0}]', 1.0),
        )
        await db.commit()
        approval = await approvals.find(POOL)
        assert approval.approved_outputs[0].script_type is ScriptType.UNKNOWN


# ── AlertRepo ─────────────────────────────────────────────────────────────

class TestAlertRepo:

    async def test_create_and_get(self, alerts):
        alert = _alert()
        await alerts.create(alert)
        loaded = await alerts.get(alert.id)
        assert loaded == alert
        assert loaded.is_active

    async def test_get_unknown(self, alerts):
        assert await alerts.get("missing") is None

    async def test_recently_alerted_miners(self, alerts):
        now = time.time()
        await alerts.create(_alert("m1", detected_at=now - 60))
        await alerts.create(_alert("m2", detected_at=now - 2 * 86400))
        await alerts.create(_alert("m3", identity=OTHER_POOL, detected_at=now - 60))
        assert await alerts.recently_alerted_miners(POOL, since=now - 86400) == {"m1"}
        assert await alerts.recently_alerted_miners(OTHER_POOL, since=now - 86400) == {"m3"}

    async def test_recently_alerted_includes_dismissed(self, alerts):
        alert = _alert("m1")
        await alerts.create(alert)
        await alerts.dismiss(alert.id, None, time.time())
        assert await alerts.recently_alerted_miners(POOL, since=0) == {"m1"}

    async def test_recently_alerted_limit(self, alerts):
        now = time.time()
        for i in range(5):
            await alerts.create(_alert(f"m{i}", detected_at=now - i))
        assert await alerts.recently_alerted_miners(POOL, since=0, limit=2) == {"m0", "m1"}

    async def test_list_active_and_all(self, alerts):
        now = time.time()
        a1 = _alert("m1", detected_at=now - 10)
        a2 = _alert("m2", detected_at=now - 5)
        await alerts.create(a1)
        await alerts.create(a2)
        await alerts.dismiss(a1.id, "known pool change", now)

        assert [a.id for a in await alerts.list_active()] == [a2.id]
        assert [a.id for a in await alerts.list_all()] == [a2.id, a1.id]
        assert [a.id for a in await alerts.list_all(miner_id="m1")] == [a1.id]
        assert await alerts.list_active(miner_id="m1") == []
        assert len(await alerts.list_all(limit=1)) == 1
        assert await alerts.count_active() == 1

    async def test_dismiss_sets_only_dismissal_fields(self, alerts):
        alert = _alert()
        await alerts.create(alert)
        assert await alerts.dismiss(alert.id, "false positive", 5000.0)
        loaded = await alerts.get(alert.id)
        assert loaded.is_dismissed
        assert loaded.dismissed_at == 5000.0
        assert loaded.dismissal_notes == "false positive"
        assert loaded.detected_at == alert.detected_at
        assert loaded.actual_outputs == alert.actual_outputs
        assert loaded.severity is AlertSeverity.HIGH

    async def test_dismiss_unknown(self, alerts):
        assert not await alerts.dismiss("missing", None, 1.0)

    async def test_delete_dismissed_before(self, alerts):
        now = time.time()
        old_dismissed = _alert("m1", detected_at=now - 100 * 86400)
        old_active = _alert("m2", detected_at=now - 100 * 86400)
        new_dismissed = _alert("m3", detected_at=now)
        for a in (old_dismissed, old_active, new_dismissed):
            await alerts.create(a)
        await alerts.dismiss(old_dismissed.id, None, now)
        await alerts.dismiss(new_dismissed.id, None, now)

        assert await alerts.delete_dismissed_before(now - 90 * 86400) == 1
        assert await alerts.get(old_dismissed.id) is None
        assert await alerts.get(old_active.id) is not None
        assert await alerts.get(new_dismissed.id) is not None
