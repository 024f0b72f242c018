"""Insider mimicry: follow open-market purchases reported by company insiders."""

from __future__ import annotations

from typing import Any

from politrade.domain.models import SignalDirection, TradeSignal
from politrade.errors import ValidationError
from politrade.strategies.base import SignalStrategy, StrategyContext


class InsiderStrategy(SignalStrategy):
    """Strength is the reported transaction value in dollars."""

    name = "insider"
    accepted_params = (
        "total_equity",
        "lookback_days",
        "min_transaction_value",
        "position_size_weight_by_value",
    )

    def __init__(
        self,
        context: StrategyContext,
        total_equity: float,
        lookback_days: int = 30,
        min_transaction_value: float = 10_000.0,
        position_size_weight_by_value: bool = True,
        **params: Any,
    ) -> None:
        super().__init__(context, total_equity, **params)
        if lookback_days <= 0:
            raise ValidationError("lookback_days must be positive")
        if min_transaction_value <= 0:
            raise ValidationError("min_transaction_value must be positive")
        self.lookback_days = int(lookback_days)
        self.min_transaction_value = float(min_transaction_value)
        self.weighting = "strength" if position_size_weight_by_value else "equal"

    def source_params(self) -> dict[str, Any]:
        return {"lookback_days": self.lookback_days}

    def select(self, signals: list[TradeSignal]) -> list[TradeSignal]:
        return [
            signal
            for signal in signals
            if signal.direction is SignalDirection.BUY
            and abs(signal.strength) >= self.min_transaction_value
        ]
