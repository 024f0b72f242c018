"""Base strategy contract: signals in, sized target positions out."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol

from politrade.domain.models import BlockReason, TargetPosition, TradeSignal
from politrade.errors import StrategyError, ValidationError
from politrade.execution.sizing import (
    PositionSizer,
    PriceHistoryProvider,
    SizingResult,
    VolatilitySizer,
    WeightedSizer,
)

logger = logging.getLogger("politrade.strategies")


class SignalSource(Protocol):
    """Producer of normalized trade signals for one strategy."""

    def fetch_signals(self, strategy: str, params: Mapping[str, Any]) -> list[TradeSignal]:
        """Return signals for the strategy given its parameter set."""


@dataclass(frozen=True)
class StrategyContext:
    """Shared collaborators handed to every strategy."""

    source: SignalSource
    prices: PriceHistoryProvider | None = None
    sizing_method: str = "weighted"
    risk_target_pct: float = 0.01


@dataclass(frozen=True)
class StrategyResult:
    """Outcome of running one strategy for one cycle."""

    name: str
    success: bool
    positions: list[TargetPosition] = field(default_factory=list)
    error: str | None = None
    skipped: dict[str, BlockReason] = field(default_factory=dict)
    signal_count: int = 0

    @classmethod
    def failed(cls, name: str, error: str) -> StrategyResult:
        return cls(name=name, success=False, error=error)


class SignalStrategy:
    """Fetch, validate, select, then size signals.

    Subclasses set ``name`` and ``accepted_params`` and override ``select``
    or ``size`` where they differ.
    """

    name: ClassVar[str] = ""
    accepted_params: ClassVar[tuple[str, ...]] = ("total_equity",)
    weighting: ClassVar[str] = "strength"

    def __init__(self, context: StrategyContext, total_equity: float, **params: Any) -> None:
        unknown = sorted(set(params) - set(self.accepted_params))
        if unknown:
            raise ValidationError(f"{self.name}: unsupported parameters {', '.join(unknown)}")
        self.context = context
        self.total_equity = float(total_equity)
        self.params = params

    def run(self) -> StrategyResult:
        if self.total_equity <= 0:
            raise StrategyError(f"{self.name}: total_equity must be positive")
        signals = self.context.source.fetch_signals(self.name, self.source_params())
        valid = self.drop_invalid(signals)
        selected = self.select(valid)
        sized = self.size(selected)
        positions = [position.with_details(source=self.name) for position in sized.positions]
        logger.info(
            "%s: %s signals, %s selected, %s positions, %s skipped",
            self.name,
            len(signals),
            len(selected),
            len(positions),
            len(sized.skipped),
        )
        return StrategyResult(
            name=self.name,
            success=True,
            positions=positions,
            skipped=dict(sized.skipped),
            signal_count=len(signals),
        )

    def source_params(self) -> dict[str, Any]:
        return dict(self.params)

    def drop_invalid(self, signals: Sequence[TradeSignal]) -> list[TradeSignal]:
        valid: list[TradeSignal] = []
        for signal in signals:
            if not signal.has_valid_symbol:
                logger.warning("%s: dropping signal with invalid ticker %r", self.name, signal.symbol)
                continue
            valid.append(signal)
        return valid

    def select(self, signals: list[TradeSignal]) -> list[TradeSignal]:
        return signals

    def size(self, signals: list[TradeSignal]) -> SizingResult:
        if not signals:
            return SizingResult()
        return self.sizer().size(signals, self.total_equity)

    def sizer(self) -> PositionSizer:
        if self.context.sizing_method == "volatility" and self.context.prices is not None:
            return VolatilitySizer(self.context.prices, risk_target_pct=self.context.risk_target_pct)
        return WeightedSizer(self.weighting)
