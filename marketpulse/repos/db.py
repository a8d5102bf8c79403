"""Database initialization and connection management.

Creates the schema on first boot, provides connection factory.
"""

import pathlib
import sqlite3

from marketpulse.errors import PersistenceError


_SCHEMA = """
CREATE TABLE IF NOT EXISTS trade_signals (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    instrument              TEXT    NOT NULL,
    direction               TEXT    NOT NULL,
    price                   REAL    NOT NULL,
    strategy                TEXT    NOT NULL,
    strength                REAL,
    position_size_notional  REAL    NOT NULL,
    leverage                INTEGER NOT NULL,
    timestamp               TEXT    NOT NULL,
    is_executed             INTEGER NOT NULL DEFAULT 0,
    metadata                TEXT
);

CREATE INDEX IF NOT EXISTS idx_trade_signals_pending
    ON trade_signals (is_executed, id);

CREATE TABLE IF NOT EXISTS orders (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    signal_id           INTEGER NOT NULL REFERENCES trade_signals (id),
    instrument          TEXT    NOT NULL,
    side                TEXT    NOT NULL,
    order_type          TEXT    NOT NULL,
    price               REAL,
    quantity            REAL    NOT NULL,
    exchange_order_id   TEXT,
    status              TEXT,
    timestamp           TEXT    NOT NULL,
    profit_loss         REAL,
    is_closed           INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_orders_signal ON orders (signal_id);
"""


def init_db(db_path: str) -> None:
    """Initialize the database, creating tables that don't exist yet.

    Creates the parent directory of *db_path* when needed.

    Args:
        db_path: Path to the SQLite database file.
    """
    if db_path != ":memory:":
        pathlib.Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    try:
        conn.executescript(_SCHEMA)
    except sqlite3.Error as exc:
        raise PersistenceError(f"Schema creation failed for {db_path}: {exc}") from exc
    finally:
        conn.close()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new SQLite connection with row-factory enabled.

    Callers are responsible for closing the connection.
    """
    try:
        conn = sqlite3.connect(db_path)
    except sqlite3.Error as exc:
        raise PersistenceError(f"Cannot open database {db_path}: {exc}") from exc
    conn.row_factory = sqlite3.Row
    return conn
