"""Order repository — SQLite CRUD for the orders table."""

import sqlite3
from typing import Optional

from marketpulse.errors import PersistenceError
from marketpulse.models.trade import Order
from marketpulse.repos.db import get_connection


def _row_to_order(row: sqlite3.Row) -> Order:
    return Order(
        id=row["id"],
        signal_id=row["signal_id"],
        instrument=row["instrument"],
        side=row["side"],
        order_type=row["order_type"],
        price=row["price"],
        quantity=row["quantity"],
        exchange_order_id=row["exchange_order_id"] or "",
        status=row["status"] or "",
        timestamp=row["timestamp"],
        profit_loss=row["profit_loss"],
        closed=bool(row["is_closed"]),
    )


class OrderRepo:
    """Data access layer for order records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _execute(self, sql: str, params: tuple) -> sqlite3.Cursor:
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur
        except sqlite3.Error as exc:
            raise PersistenceError(f"Order write failed: {exc}") from exc
        finally:
            conn.close()

    def _query(self, sql: str, params: tuple = ()) -> list[Order]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Order query failed: {exc}") from exc
        finally:
            conn.close()
        return [_row_to_order(r) for r in rows]

    # ── Write ────────────────────────────────────────────────────────────

    def create_order(self, order: Order) -> Order:
        """Insert *order* and return it with its ``id``."""
        cur = self._execute(
            """
            INSERT INTO orders
                (signal_id, instrument, side, order_type, price, quantity,
                 exchange_order_id, status, timestamp, profit_loss, is_closed)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                order.signal_id, order.instrument, order.side, order.order_type,
                order.price, order.quantity, order.exchange_order_id,
                order.status, order.timestamp, order.profit_loss,
                1 if order.closed else 0,
            ),
        )
        return self.get_order(cur.lastrowid)

    def update_status(self, order_id: int, status: str) -> None:
        self._execute("UPDATE orders SET status = ? WHERE id = ?", (status, order_id))

    def close_order(self, order_id: int, profit_loss: Optional[float] = None) -> None:
        """Mark an order closed, recording realised profit/loss when known."""
        self._execute(
            "UPDATE orders SET is_closed = 1, profit_loss = ? WHERE id = ?",
            (profit_loss, order_id),
        )

    # ── Read ─────────────────────────────────────────────────────────────

    def get_order(self, order_id: int) -> Optional[Order]:
        rows = self._query("SELECT * FROM orders WHERE id = ?", (order_id,))
        return rows[0] if rows else None

    def get_by_signal(self, signal_id: int) -> list[Order]:
        return self._query(
            "SELECT * FROM orders WHERE signal_id = ? ORDER BY id ASC", (signal_id,)
        )

    def open_for_instrument(self, instrument: str) -> list[Order]:
        return self._query(
            "SELECT * FROM orders WHERE instrument = ? AND is_closed = 0 ORDER BY id ASC",
            (instrument,),
        )

    def recent(self, limit: int = 20) -> list[Order]:
        return self._query("SELECT * FROM orders ORDER BY id DESC LIMIT ?", (limit,))
