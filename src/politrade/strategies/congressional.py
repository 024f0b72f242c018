"""Congressional trade mimicry: follow disclosed purchases by legislators."""

from __future__ import annotations

from typing import Any

from politrade.domain.models import SignalDirection, TradeSignal
from politrade.errors import ValidationError
from politrade.strategies.base import SignalStrategy, StrategyContext


class CongressionalStrategy(SignalStrategy):
    """Strength is the politician quality score on a 0-10 scale."""

    name = "congressional"
    accepted_params = ("total_equity", "min_quality_score", "lookback_days")

    def __init__(
        self,
        context: StrategyContext,
        total_equity: float,
        min_quality_score: float = 5.0,
        lookback_days: int = 45,
        **params: Any,
    ) -> None:
        super().__init__(context, total_equity, **params)
        if not 0 <= min_quality_score <= 10:
            raise ValidationError("min_quality_score must be between 0 and 10")
        if lookback_days <= 0:
            raise ValidationError("lookback_days must be positive")
        self.min_quality_score = float(min_quality_score)
        self.lookback_days = int(lookback_days)

    def source_params(self) -> dict[str, Any]:
        return {"lookback_days": self.lookback_days}

    def select(self, signals: list[TradeSignal]) -> list[TradeSignal]:
        return [
            signal
            for signal in signals
            if signal.direction is SignalDirection.BUY
            and abs(signal.strength) >= self.min_quality_score
        ]
