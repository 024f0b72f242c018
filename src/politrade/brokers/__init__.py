"""Brokerage gateway implementations."""

from .alpaca import AlpacaGateway, build_gateway, classify_rejection
from .base import BrokerageGateway

__all__ = ["BrokerageGateway", "AlpacaGateway", "build_gateway", "classify_rejection"]
