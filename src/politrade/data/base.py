"""Market data provider contract."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

import pandas as pd

from politrade.domain.models import Quote


class MarketDataProvider(Protocol):
    """Interface for price discovery and bar retrieval."""

    def get_latest_trade_price(self, symbol: str) -> float | None:
        """Return the last executed trade price, or None when no trade is known."""

    def get_latest_quote(self, symbol: str) -> Quote | None:
        """Return the latest two-sided quote, or None."""

    def get_bars(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        timeframe: str = "1Day",
    ) -> pd.DataFrame:
        """Return OHLCV bars with a datetime index. Empty when none exist."""

    def get_multi_bars(
        self,
        symbols: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: str = "1Day",
    ) -> dict[str, pd.DataFrame]:
        """Return OHLCV bars for several symbols from batched requests."""
