"""Signal strategies and the static registry."""

from .base import SignalSource, SignalStrategy, StrategyContext, StrategyResult
from .congressional import CongressionalStrategy
from .insider import InsiderStrategy
from .lobbying import LobbyingStrategy
from .registry import (
    STRATEGIES,
    StrategyAllocation,
    StrategyName,
    StrategyRegistry,
    normalize_strategy_name,
)

__all__ = [
    "STRATEGIES",
    "CongressionalStrategy",
    "InsiderStrategy",
    "LobbyingStrategy",
    "SignalSource",
    "SignalStrategy",
    "StrategyAllocation",
    "StrategyContext",
    "StrategyName",
    "StrategyRegistry",
    "StrategyResult",
    "normalize_strategy_name",
]
