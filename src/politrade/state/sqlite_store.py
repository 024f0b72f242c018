"""SQLite store for blocked-asset cooldowns that survive restarts."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

from politrade.domain.models import BlockReason
from politrade.state.store import DEFAULT_COOLDOWN_DAYS, BlockedAsset, utc_now


class SqliteBlockedAssetStore:
    """SQLite-backed implementation of the blocked-asset store."""

    def __init__(
        self,
        db_path: str,
        cooldown_days: int = DEFAULT_COOLDOWN_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.connection = sqlite3.connect(db_path)
        self.connection.row_factory = sqlite3.Row
        self.cooldown = timedelta(days=cooldown_days)
        self.clock = clock
        self._initialize_schema()

    def block(self, symbol: str, reason: BlockReason) -> BlockedAsset:
        now = self.clock()
        entry = BlockedAsset(
            symbol=symbol,
            reason=BlockReason(reason),
            blocked_at=now,
            expires_at=now + self.cooldown,
        )
        self.connection.execute(
            """
            INSERT INTO blocked_assets(symbol, reason, blocked_ts, expires_ts)
            VALUES(?, ?, ?, ?)
            ON CONFLICT(symbol) DO UPDATE SET
                reason = excluded.reason,
                blocked_ts = excluded.blocked_ts,
                expires_ts = excluded.expires_ts
            """,
            (symbol, entry.reason.value, now.isoformat(), entry.expires_at.isoformat()),
        )
        self.connection.commit()
        return entry

    def get(self, symbol: str) -> BlockedAsset | None:
        row = self.connection.execute(
            """
            SELECT symbol, reason, blocked_ts, expires_ts
            FROM blocked_assets
            WHERE symbol = ? AND expires_ts > ?
            """,
            (symbol, self.clock().isoformat()),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)

    def is_blocked(self, symbol: str) -> bool:
        return self.get(symbol) is not None

    def blocked_symbols(self) -> set[str]:
        rows = self.connection.execute(
            "SELECT symbol FROM blocked_assets WHERE expires_ts > ?",
            (self.clock().isoformat(),),
        ).fetchall()
        return {str(row["symbol"]) for row in rows}

    def list_active(self) -> list[BlockedAsset]:
        rows = self.connection.execute(
            """
            SELECT symbol, reason, blocked_ts, expires_ts
            FROM blocked_assets
            WHERE expires_ts > ?
            ORDER BY expires_ts ASC
            """,
            (self.clock().isoformat(),),
        ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def cleanup_expired(self) -> int:
        cursor = self.connection.execute(
            "DELETE FROM blocked_assets WHERE expires_ts <= ?",
            (self.clock().isoformat(),),
        )
        self.connection.commit()
        return int(cursor.rowcount)

    def close(self) -> None:
        self.connection.close()

    def _initialize_schema(self) -> None:
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS blocked_assets(
                symbol TEXT PRIMARY KEY,
                reason TEXT NOT NULL,
                blocked_ts TEXT NOT NULL,
                expires_ts TEXT NOT NULL
            )
            """
        )
        self.connection.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_blocked_assets_expires
            ON blocked_assets(expires_ts)
            """
        )
        self.connection.commit()

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> BlockedAsset:
        return BlockedAsset(
            symbol=str(row["symbol"]),
            reason=BlockReason(str(row["reason"])),
            blocked_at=datetime.fromisoformat(str(row["blocked_ts"])),
            expires_at=datetime.fromisoformat(str(row["expires_ts"])),
        )
