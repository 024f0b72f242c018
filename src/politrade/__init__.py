"""Blend alternative-data trading strategies and rebalance a brokerage account."""

__version__ = "0.1.0"
