"""Blocked-asset store contract used by the rebalancer and runtime."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from politrade.domain.models import BlockReason

DEFAULT_COOLDOWN_DAYS = 7


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class BlockedAsset:
    """Symbol flagged untradeable until ``expires_at``."""

    symbol: str
    reason: BlockReason
    blocked_at: datetime
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now


class BlockedAssetStore(Protocol):
    """Persistence API for time-boxed symbol exclusions."""

    def block(self, symbol: str, reason: BlockReason) -> BlockedAsset:
        """Flag a symbol, refreshing expiry and reason when already blocked."""

    def is_blocked(self, symbol: str) -> bool:
        """Return true while an unexpired block exists."""

    def blocked_symbols(self) -> set[str]:
        """Return every symbol with an unexpired block."""

    def cleanup_expired(self) -> int:
        """Delete expired blocks and return how many were removed."""

    def close(self) -> None:
        """Close persistence resources."""


class InMemoryBlockedAssetStore:
    """Process-local store used for plan-only runs and tests."""

    def __init__(
        self,
        cooldown_days: int = DEFAULT_COOLDOWN_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.cooldown = timedelta(days=cooldown_days)
        self.clock = clock
        self._entries: dict[str, BlockedAsset] = {}

    def block(self, symbol: str, reason: BlockReason) -> BlockedAsset:
        now = self.clock()
        entry = BlockedAsset(
            symbol=symbol,
            reason=BlockReason(reason),
            blocked_at=now,
            expires_at=now + self.cooldown,
        )
        self._entries[symbol] = entry
        return entry

    def get(self, symbol: str) -> BlockedAsset | None:
        entry = self._entries.get(symbol)
        if entry is None or not entry.is_active(self.clock()):
            return None
        return entry

    def is_blocked(self, symbol: str) -> bool:
        return self.get(symbol) is not None

    def blocked_symbols(self) -> set[str]:
        now = self.clock()
        return {symbol for symbol, entry in self._entries.items() if entry.is_active(now)}

    def cleanup_expired(self) -> int:
        now = self.clock()
        expired = [symbol for symbol, entry in self._entries.items() if not entry.is_active(now)]
        for symbol in expired:
            del self._entries[symbol]
        return len(expired)

    def close(self) -> None:
        self._entries.clear()
