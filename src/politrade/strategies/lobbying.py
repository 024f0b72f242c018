"""Lobbying factor: market-neutral long heavy spenders, short light ones."""

from __future__ import annotations

from typing import Any

from politrade.domain.models import PositionDetails, SignalDirection, TargetPosition, TradeSignal
from politrade.errors import ValidationError
from politrade.execution.sizing import SizingResult
from politrade.strategies.base import SignalStrategy, StrategyContext


class LobbyingStrategy(SignalStrategy):
    """Buy signals form the long leg and sell signals the short leg.

    Each leg receives its own share of equity and is equal-weighted.
    """

    name = "lobbying"
    accepted_params = ("total_equity", "quarter", "long_pct", "short_pct")

    def __init__(
        self,
        context: StrategyContext,
        total_equity: float,
        quarter: str | None = None,
        long_pct: float = 0.5,
        short_pct: float = 0.5,
        **params: Any,
    ) -> None:
        super().__init__(context, total_equity, **params)
        if long_pct < 0 or short_pct < 0 or long_pct + short_pct > 1.0 + 1e-9:
            raise ValidationError("long_pct and short_pct must be non-negative and sum to <= 1")
        self.quarter = quarter
        self.long_pct = float(long_pct)
        self.short_pct = float(short_pct)

    def source_params(self) -> dict[str, Any]:
        return {"quarter": self.quarter} if self.quarter else {}

    def size(self, signals: list[TradeSignal]) -> SizingResult:
        longs = list(dict.fromkeys(s.symbol for s in signals if s.direction is SignalDirection.BUY))
        shorts = list(
            dict.fromkeys(
                s.symbol
                for s in signals
                if s.direction is SignalDirection.SELL and s.symbol not in longs
            )
        )
        positions: list[TargetPosition] = []
        for symbols, pct, sign in ((longs, self.long_pct, 1.0), (shorts, self.short_pct, -1.0)):
            if not symbols:
                continue
            per_symbol = self.total_equity * pct / len(symbols)
            for symbol in symbols:
                positions.append(
                    TargetPosition(
                        symbol=symbol,
                        target_value=sign * per_symbol,
                        details=PositionDetails(allocation_pct=pct / len(symbols)),
                    )
                )
        return SizingResult(positions=positions)
