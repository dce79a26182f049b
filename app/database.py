"""
SQLite connection management and schema initialisation.
Uses the synchronous sqlite3 module; get_db() hands out a connection.
"""

import os
import sqlite3
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DB_PATH = os.getenv("DB_PATH", "data/checkout.db")


def get_db() -> sqlite3.Connection:
    """Open a SQLite connection with WAL journaling and foreign keys enabled."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


# ── Tables ────────────────────────────────────────────────

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS stores (
    id                  VARCHAR(32)  PRIMARY KEY,
    slug                VARCHAR(64)  NOT NULL UNIQUE,
    name                VARCHAR(128) NOT NULL,
    active              INTEGER      DEFAULT 1,
    payment_provider    VARCHAR(16)  NOT NULL DEFAULT 'MERCADOPAGO',
    mp_access_token     TEXT,
    mp_public_key       TEXT,
    mp_webhook_secret   TEXT,
    mp_point_device_id  VARCHAR(128),
    mp_point_enabled    INTEGER      DEFAULT 0,
    pb_token            TEXT,
    pb_email            VARCHAR(128),
    pb_point_serial     VARCHAR(128),
    pb_point_enabled    INTEGER      DEFAULT 0,
    created_at          DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at          DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS products (
    id              VARCHAR(32)  PRIMARY KEY,
    store_id        VARCHAR(32)  NOT NULL REFERENCES stores(id),
    barcode         VARCHAR(64),
    name            VARCHAR(256) NOT NULL,
    price           TEXT         NOT NULL,  -- decimal string
    active          INTEGER      DEFAULT 1,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS orders (
    id                  VARCHAR(32)  PRIMARY KEY,
    store_id            VARCHAR(32)  NOT NULL REFERENCES stores(id),
    total               TEXT         NOT NULL,  -- decimal string
    status              VARCHAR(16)  NOT NULL DEFAULT 'PENDING',
    payment_provider    VARCHAR(16),
    payment_method      VARCHAR(16),
    payment_id          VARCHAR(128),
    external_reference  VARCHAR(64),
    point_payment       INTEGER      DEFAULT 0,
    created_at          DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at          DATETIME     NOT NULL DEFAULT (datetime('now')),
    paid_at             DATETIME
);

CREATE TABLE IF NOT EXISTS order_items (
    id              INTEGER      PRIMARY KEY AUTOINCREMENT,
    order_id        VARCHAR(32)  NOT NULL REFERENCES orders(id),
    product_id      VARCHAR(32)  NOT NULL REFERENCES products(id),
    product_name    VARCHAR(256) NOT NULL,
    unit_price      TEXT         NOT NULL,  -- decimal string
    quantity        INTEGER      NOT NULL
);
"""

# ── Indexes ───────────────────────────────────────────────

_CREATE_INDEXES = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_stores_slug
    ON stores(slug);
CREATE INDEX IF NOT EXISTS idx_products_store
    ON products(store_id);
CREATE INDEX IF NOT EXISTS idx_products_barcode
    ON products(store_id, barcode);
CREATE INDEX IF NOT EXISTS idx_orders_store_status
    ON orders(store_id, status);
CREATE INDEX IF NOT EXISTS idx_orders_payment_id
    ON orders(payment_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_orders_external_reference
    ON orders(external_reference);
CREATE INDEX IF NOT EXISTS idx_orders_created_at
    ON orders(created_at);
CREATE INDEX IF NOT EXISTS idx_order_items_order
    ON order_items(order_id);
"""


# ── Initialisation ────────────────────────────────────────

def init_db() -> None:
    """Create the database directory, tables and indexes."""
    db_dir = Path(DB_PATH).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = get_db()
    try:
        conn.executescript(_CREATE_TABLES)
        conn.executescript(_CREATE_INDEXES)
        _migrate_schema(conn)
        conn.commit()
    finally:
        conn.close()


def _migrate_schema(conn: sqlite3.Connection) -> None:
    """Add columns introduced after the first release (idempotent)."""
    try:
        conn.execute("SELECT mp_webhook_secret FROM stores LIMIT 1")
    except sqlite3.OperationalError:
        conn.execute("ALTER TABLE stores ADD COLUMN mp_webhook_secret TEXT")
