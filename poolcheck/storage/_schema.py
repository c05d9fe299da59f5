SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied_at REAL NOT NULL
);

-- Miners: last known pool configuration per device
CREATE TABLE IF NOT EXISTS miners (
    miner_id              TEXT PRIMARY KEY,
    hostname              TEXT NOT NULL DEFAULT '',
    ip_address            TEXT NOT NULL DEFAULT '',
    stratum_url           TEXT NOT NULL DEFAULT '',
    stratum_port          INTEGER NOT NULL DEFAULT 0,
    stratum_user          TEXT NOT NULL DEFAULT '',
    fallback_stratum_url  TEXT NOT NULL DEFAULT '',
    fallback_stratum_port INTEGER NOT NULL DEFAULT 0,
    fallback_stratum_user TEXT NOT NULL DEFAULT '',
    is_using_fallback     INTEGER NOT NULL DEFAULT 0,
    updated_at            REAL NOT NULL
);

-- Pool approvals: one verified output baseline per pool identity
CREATE TABLE IF NOT EXISTS pool_approvals (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    pool_url             TEXT NOT NULL,
    pool_port            INTEGER NOT NULL,
    stratum_user_base    TEXT NOT NULL,
    approved_outputs     TEXT NOT NULL DEFAULT '[]',
    verified_at          REAL NOT NULL,
    verified_by_miner_id TEXT,
    verification_notes   TEXT,
    is_auto_approved     INTEGER NOT NULL DEFAULT 0,
    UNIQUE (pool_url, pool_port, stratum_user_base)
);

-- Pool alerts: append-only; only the dismissal columns change later
CREATE TABLE IF NOT EXISTS pool_alerts (
    id                     TEXT PRIMARY KEY,
    detected_at            REAL NOT NULL,
    miner_id               TEXT NOT NULL,
    miner_hostname         TEXT NOT NULL DEFAULT '',
    miner_ip               TEXT NOT NULL DEFAULT '',
    pool_url               TEXT NOT NULL,
    pool_port              INTEGER NOT NULL,
    stratum_user_base      TEXT NOT NULL,
    stratum_user           TEXT NOT NULL DEFAULT '',
    is_using_fallback_pool INTEGER NOT NULL DEFAULT 0,
    expected_outputs       TEXT NOT NULL DEFAULT '[]',
    actual_outputs         TEXT NOT NULL DEFAULT '[]',
    severity               TEXT NOT NULL CHECK (severity IN ('low', 'medium', 'high', 'critical')),
    is_dismissed           INTEGER NOT NULL DEFAULT 0,
    dismissed_at           REAL,
    dismissal_notes        TEXT,
    raw_message            TEXT
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_alerts_pool_time ON pool_alerts(pool_url, pool_port, stratum_user_base, detected_at);
CREATE INDEX IF NOT EXISTS idx_alerts_miner ON pool_alerts(miner_id);
CREATE INDEX IF NOT EXISTS idx_alerts_active ON pool_alerts(detected_at) WHERE is_dismissed = 0;
"""
