"""Trade signal repository — SQLite CRUD for the trade_signals table."""

import json
import sqlite3
from typing import Optional

from marketpulse.errors import PersistenceError
from marketpulse.models.trade import TradeSignal
from marketpulse.repos.db import get_connection


def _row_to_signal(row: sqlite3.Row) -> TradeSignal:
    return TradeSignal(
        id=row["id"],
        instrument=row["instrument"],
        direction=row["direction"],
        price=row["price"],
        strategy=row["strategy"],
        strength=row["strength"] or 0.0,
        position_size_notional=row["position_size_notional"],
        leverage=row["leverage"],
        timestamp=row["timestamp"],
        executed=bool(row["is_executed"]),
        metadata=json.loads(row["metadata"]) if row["metadata"] else {},
    )


class SignalRepo:
    """Data access layer for trade signals.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def create_signal(self, signal: TradeSignal) -> TradeSignal:
        """Insert *signal* in the PENDING state and return it with its ``id``."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO trade_signals
                    (instrument, direction, price, strategy, strength,
                     position_size_notional, leverage, timestamp,
                     is_executed, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    signal.instrument, signal.direction, signal.price,
                    signal.strategy, signal.strength,
                    signal.position_size_notional, signal.leverage,
                    signal.timestamp, json.dumps(signal.metadata),
                ),
            )
            conn.commit()
            signal_id = cur.lastrowid
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not create signal for {signal.instrument}: {exc}") from exc
        finally:
            conn.close()
        return self.get_signal(signal_id)

    def mark_executed(self, signal_id: int) -> bool:
        """Flip a signal to EXECUTED.

        Returns ``False`` when the signal was already executed (or does not
        exist); the update never reverts an executed signal.
        """
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                "UPDATE trade_signals SET is_executed = 1 WHERE id = ? AND is_executed = 0",
                (signal_id,),
            )
            conn.commit()
            return cur.rowcount == 1
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not mark signal {signal_id} executed: {exc}") from exc
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def _query(self, sql: str, params: tuple = ()) -> list[TradeSignal]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Signal query failed: {exc}") from exc
        finally:
            conn.close()
        return [_row_to_signal(r) for r in rows]

    def get_signal(self, signal_id: int) -> Optional[TradeSignal]:
        rows = self._query("SELECT * FROM trade_signals WHERE id = ?", (signal_id,))
        return rows[0] if rows else None

    def list_pending(self) -> list[TradeSignal]:
        """All PENDING signals, oldest first."""
        return self._query(
            "SELECT * FROM trade_signals WHERE is_executed = 0 ORDER BY id ASC"
        )

    def latest_for_instrument(self, instrument: str) -> Optional[TradeSignal]:
        rows = self._query(
            "SELECT * FROM trade_signals WHERE instrument = ? "
            "ORDER BY timestamp DESC, id DESC LIMIT 1",
            (instrument,),
        )
        return rows[0] if rows else None

    def recent(
        self,
        limit: int = 20,
        executed: Optional[bool] = None,
        instrument: Optional[str] = None,
    ) -> list[TradeSignal]:
        """Newest signals first, optionally filtered by state and instrument."""
        conditions: list[str] = []
        params: list = []
        if executed is not None:
            conditions.append("is_executed = ?")
            params.append(1 if executed else 0)
        if instrument:
            conditions.append("instrument = ?")
            params.append(instrument)

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        return self._query(
            f"SELECT * FROM trade_signals {where_clause} ORDER BY id DESC LIMIT ?",
            (*params, limit),
        )
