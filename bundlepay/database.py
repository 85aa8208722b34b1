"""
SQLite connection management and schema initialisation.
Uses synchronous sqlite3; get_db() hands out a fresh connection.
"""

import os
import sqlite3
from pathlib import Path

import bcrypt
from dotenv import load_dotenv

load_dotenv()

DB_PATH = os.getenv("DB_PATH", "data/bundlepay.db")


def get_db() -> sqlite3.Connection:
    """Open a SQLite connection with WAL journaling and foreign keys enabled."""
    conn = sqlite3.connect(DB_PATH, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


# ── Table DDL ─────────────────────────────────────────────

# Money columns are TEXT holding a 2-decimal string; NUMERIC affinity
# would silently coerce them to REAL.
_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS admin (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    username        VARCHAR(64)  NOT NULL UNIQUE,
    password_hash   VARCHAR(128) NOT NULL,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS system_config (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    config_key      VARCHAR(64)  NOT NULL UNIQUE,
    config_value    TEXT,
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS vendors (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    name             VARCHAR(128) NOT NULL,
    email            VARCHAR(128) NOT NULL UNIQUE,
    phone            VARCHAR(16)  NOT NULL,
    password_hash    VARCHAR(128) NOT NULL,
    vendor_link      VARCHAR(64)  NOT NULL UNIQUE,
    approved         INTEGER      DEFAULT 0,
    parent_vendor_id INTEGER      REFERENCES vendors(id),
    profit           TEXT         NOT NULL DEFAULT '0.00',
    created_at       DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at       DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS data_bundles (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            VARCHAR(128) NOT NULL,
    network         VARCHAR(32)  NOT NULL,
    data_amount     VARCHAR(32)  NOT NULL,
    base_price      TEXT         NOT NULL,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS vendor_prices (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    vendor_id       INTEGER      NOT NULL REFERENCES vendors(id),
    bundle_id       INTEGER      NOT NULL REFERENCES data_bundles(id),
    price           TEXT         NOT NULL,
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS orders (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    vendor_id       INTEGER      NOT NULL REFERENCES vendors(id),
    sub_vendor_id   INTEGER      REFERENCES vendors(id),
    bundle_id       INTEGER      NOT NULL REFERENCES data_bundles(id),
    customer_phone  VARCHAR(16)  NOT NULL,
    amount_paid     TEXT         NOT NULL,
    status          VARCHAR(16)  NOT NULL DEFAULT 'pending',
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS payment_transactions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    reference       VARCHAR(64)  NOT NULL UNIQUE,
    order_id        INTEGER,
    amount          TEXT         NOT NULL,
    status          VARCHAR(16)  NOT NULL DEFAULT 'pending',
    vendor_id       INTEGER,
    sub_vendor_id   INTEGER,
    bundle_id       INTEGER,
    customer_phone  VARCHAR(16),
    customer_email  VARCHAR(128),
    failure_reason  TEXT,
    paid_at         DATETIME,
    last_checked_at DATETIME,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS withdrawals (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    vendor_id           INTEGER      NOT NULL REFERENCES vendors(id),
    amount_requested    TEXT         NOT NULL,
    mobile_money_number VARCHAR(16)  NOT NULL,
    status              VARCHAR(16)  NOT NULL DEFAULT 'pending',
    requested_at        DATETIME     NOT NULL DEFAULT (datetime('now')),
    processed_at        DATETIME
);
"""

# ── Index DDL ─────────────────────────────────────────────

_CREATE_INDEXES = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_vendors_email
    ON vendors(email);
CREATE UNIQUE INDEX IF NOT EXISTS idx_vendors_link
    ON vendors(vendor_link);
CREATE INDEX IF NOT EXISTS idx_vendors_parent
    ON vendors(parent_vendor_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_vendor_prices_pair
    ON vendor_prices(vendor_id, bundle_id);
CREATE INDEX IF NOT EXISTS idx_orders_vendor_status
    ON orders(vendor_id, status);
CREATE INDEX IF NOT EXISTS idx_orders_sub_vendor_status
    ON orders(sub_vendor_id, status);
CREATE INDEX IF NOT EXISTS idx_orders_created_at
    ON orders(created_at);
CREATE UNIQUE INDEX IF NOT EXISTS idx_payment_transactions_reference
    ON payment_transactions(reference);
CREATE INDEX IF NOT EXISTS idx_payment_transactions_status
    ON payment_transactions(status, created_at);
CREATE INDEX IF NOT EXISTS idx_withdrawals_vendor_status
    ON withdrawals(vendor_id, status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_system_config_key
    ON system_config(config_key);
"""


# ── Initialisation ────────────────────────────────────────

def init_db() -> None:
    """Create the data directory, tables and indexes, and seed the default admin."""
    db_dir = Path(DB_PATH).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = get_db()
    try:
        conn.executescript(_CREATE_TABLES)
        conn.executescript(_CREATE_INDEXES)

        _create_default_admin(conn)

        conn.commit()
    finally:
        conn.close()


def drop_all(conn: sqlite3.Connection) -> None:
    """Drop every application table (test helper)."""
    conn.executescript("""
        DROP TABLE IF EXISTS withdrawals;
        DROP TABLE IF EXISTS payment_transactions;
        DROP TABLE IF EXISTS orders;
        DROP TABLE IF EXISTS vendor_prices;
        DROP TABLE IF EXISTS data_bundles;
        DROP TABLE IF EXISTS vendors;
        DROP TABLE IF EXISTS system_config;
        DROP TABLE IF EXISTS admin;
    """)


def _create_default_admin(conn: sqlite3.Connection) -> None:
    """Create the admin account from environment variables if none exists."""
    row = conn.execute("SELECT COUNT(*) AS cnt FROM admin").fetchone()
    if row["cnt"] > 0:
        return

    username = os.getenv("ADMIN_USERNAME", "admin")
    password = os.getenv("ADMIN_PASSWORD", "admin123")

    password_hash = bcrypt.hashpw(
        password.encode("utf-8"), bcrypt.gensalt()
    ).decode("utf-8")

    conn.execute(
        "INSERT INTO admin (username, password_hash) VALUES (?, ?)",
        (username, password_hash),
    )
