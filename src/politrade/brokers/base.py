"""Brokerage gateway contract definitions."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

import pandas as pd

from politrade.domain.models import (
    AccountSnapshot,
    BrokerPosition,
    OpenOrder,
    OrderRequest,
    OrderResult,
    Quote,
)


class BrokerageGateway(Protocol):
    """Interface for the trading account the rebalancer converges."""

    def get_account(self) -> AccountSnapshot:
        """Return equity, cash and positions as one point-in-time read."""

    def get_positions(self) -> dict[str, BrokerPosition]:
        """Return current positions keyed by symbol."""

    def get_open_orders(self, symbols: Sequence[str] | None = None) -> list[OpenOrder]:
        """Return unfilled orders, optionally filtered by symbol."""

    def cancel_order(self, order_id: str) -> None:
        """Cancel one order by id."""

    def place_order(self, request: OrderRequest) -> OrderResult:
        """Submit one order. Rejections are returned, never raised."""

    def close_position(self, symbol: str) -> OrderResult:
        """Close an entire position without specifying a quantity."""

    def get_latest_trade_price(self, symbol: str) -> float | None:
        """Return the latest executed trade price."""

    def get_latest_quote(self, symbol: str) -> Quote | None:
        """Return the latest bid/ask quote."""

    def get_price_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        timeframe: str = "1Day",
    ) -> pd.DataFrame:
        """Return OHLCV bars for one symbol."""

    def get_price_histories(
        self,
        symbols: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: str = "1Day",
    ) -> dict[str, pd.DataFrame]:
        """Return OHLCV bars for many symbols using batched requests."""
