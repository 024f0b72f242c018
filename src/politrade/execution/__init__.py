"""Position sizing and rebalancing."""

from .rebalancer import (
    DUST_QTY_THRESHOLD,
    NEGLIGIBLE_DELTA,
    ExecutedOrder,
    RebalanceReport,
    Rebalancer,
    round_down_cents,
    whole_shares,
)
from .sizing import (
    PositionSizer,
    PriceHistoryProvider,
    SizingResult,
    VolatilitySizer,
    WeightedSizer,
    average_true_range,
    net_scores,
    true_ranges,
)

__all__ = [
    "DUST_QTY_THRESHOLD",
    "NEGLIGIBLE_DELTA",
    "ExecutedOrder",
    "PositionSizer",
    "PriceHistoryProvider",
    "RebalanceReport",
    "Rebalancer",
    "SizingResult",
    "VolatilitySizer",
    "WeightedSizer",
    "average_true_range",
    "net_scores",
    "round_down_cents",
    "true_ranges",
    "whole_shares",
]
