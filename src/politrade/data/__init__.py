"""Market data providers."""

from .alpaca_market_data import AlpacaMarketData
from .base import MarketDataProvider

__all__ = ["MarketDataProvider", "AlpacaMarketData"]
