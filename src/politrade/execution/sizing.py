"""Position sizing policies that turn signals into dollar targets."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

import pandas as pd

from politrade.domain.models import BlockReason, PositionDetails, TargetPosition, TradeSignal
from politrade.errors import DataUnavailableError, ValidationError

ATR_PERIOD = 14
FALLBACK_VOLATILITY_PCT = 0.03
STOP_ATR_MULTIPLIER = 2.0
BATCH_THRESHOLD = 50

logger = logging.getLogger("politrade.execution.sizing")


def net_scores(signals: Iterable[TradeSignal]) -> dict[str, float]:
    """Sum signed strengths per symbol, keeping first-seen symbol order."""
    scores: dict[str, list[float]] = {}
    for signal in signals:
        scores.setdefault(signal.symbol, []).append(signal.signed_strength)
    return {symbol: math.fsum(values) for symbol, values in scores.items()}


def true_ranges(frame: pd.DataFrame) -> pd.Series:
    """True range for every bar that has a previous close."""
    if frame.empty or len(frame) < 2:
        return pd.Series(dtype=float)
    prev_close = frame["close"].shift(1)
    ranges = pd.concat(
        [
            frame["high"] - frame["low"],
            (frame["high"] - prev_close).abs(),
            (frame["low"] - prev_close).abs(),
        ],
        axis=1,
    ).max(axis=1, skipna=False)
    return ranges.iloc[1:].astype(float)


def average_true_range(frame: pd.DataFrame, period: int = ATR_PERIOD) -> float | None:
    """Simple moving average of the last ``period`` true ranges.

    Returns None when fewer than ``period + 1`` bars are available.
    """
    ranges = true_ranges(frame).dropna()
    if len(ranges) < period:
        return None
    atr = float(ranges.tail(period).mean())
    if not math.isfinite(atr) or atr <= 0:
        return None
    return atr


@dataclass(frozen=True)
class SizingResult:
    """Sized positions plus symbols that could not be priced."""

    positions: list[TargetPosition] = field(default_factory=list)
    skipped: dict[str, BlockReason] = field(default_factory=dict)


class PositionSizer(Protocol):
    """Turns one strategy's signals into dollar-denominated targets."""

    def size(self, signals: Sequence[TradeSignal], allocated_equity: float) -> SizingResult:
        """Return target positions for the allocated equity slice."""


class PriceSource(Protocol):
    def get_latest_trade_price(self, symbol: str) -> float | None: ...

    def get_price_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        timeframe: str = "1Day",
    ) -> pd.DataFrame: ...

    def get_price_histories(
        self,
        symbols: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: str = "1Day",
    ) -> dict[str, pd.DataFrame]: ...


class PriceHistoryProvider:
    """Loads daily bars for a universe, batching large requests."""

    def __init__(
        self,
        source: PriceSource,
        lookback_days: int = ATR_PERIOD * 3,
        batch_threshold: int = BATCH_THRESHOLD,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.source = source
        self.lookback_days = lookback_days
        self.batch_threshold = batch_threshold
        self.clock = clock or (lambda: datetime.now(tz=UTC))

    def histories(self, symbols: Sequence[str]) -> dict[str, pd.DataFrame]:
        unique = list(dict.fromkeys(symbols))
        if not unique:
            return {}
        end = self.clock()
        start = end - timedelta(days=self.lookback_days)
        if len(unique) > self.batch_threshold:
            logger.info("Fetching bars for %s symbols in batched requests", len(unique))
            try:
                frames = self.source.get_price_histories(unique, start, end)
            except DataUnavailableError as exc:
                logger.error("Batched bar request failed: %s", exc)
                frames = {}
            return {symbol: frames.get(symbol, _empty_frame()) for symbol in unique}

        frames: dict[str, pd.DataFrame] = {}
        for symbol in unique:
            try:
                frames[symbol] = self.source.get_price_history(symbol, start, end)
            except DataUnavailableError as exc:
                logger.warning("%s: bar request failed: %s", symbol, exc)
                frames[symbol] = _empty_frame()
        return frames

    def latest_price(self, symbol: str, frame: pd.DataFrame | None = None) -> float | None:
        """Last close from history, falling back to the latest trade."""
        if frame is not None and not frame.empty:
            close = float(frame["close"].iloc[-1])
            if math.isfinite(close) and close > 0:
                return close
        try:
            price = self.source.get_latest_trade_price(symbol)
        except DataUnavailableError as exc:
            logger.warning("%s: latest trade lookup failed: %s", symbol, exc)
            return None
        return price if price is not None and price > 0 else None


class WeightedSizer:
    """Equal or strength-weighted sizing across a strategy's signals."""

    def __init__(self, weighting: str = "strength") -> None:
        if weighting not in {"equal", "strength"}:
            raise ValidationError("weighting must be 'equal' or 'strength'")
        self.weighting = weighting

    def size(self, signals: Sequence[TradeSignal], allocated_equity: float) -> SizingResult:
        scores = {symbol: score for symbol, score in net_scores(signals).items() if score != 0}
        if not scores or allocated_equity <= 0:
            return SizingResult()
        source = signals[0].source_strategy
        if self.weighting == "equal":
            weights = {symbol: 1.0 / len(scores) for symbol in scores}
        else:
            total = math.fsum(abs(score) for score in scores.values())
            weights = {symbol: abs(score) / total for symbol, score in scores.items()}

        positions = []
        for symbol, score in scores.items():
            value = allocated_equity * weights[symbol]
            positions.append(
                TargetPosition(
                    symbol=symbol,
                    target_value=value if score > 0 else -value,
                    details=PositionDetails(
                        source=source,
                        net_score=score,
                        allocation_pct=weights[symbol],
                    ),
                )
            )
        return SizingResult(positions=positions)


class VolatilitySizer:
    """ATR risk-parity sizing: each full-strength position risks the same dollars."""

    def __init__(
        self,
        prices: PriceHistoryProvider,
        risk_target_pct: float = 0.01,
        atr_period: int = ATR_PERIOD,
        fallback_volatility_pct: float = FALLBACK_VOLATILITY_PCT,
    ) -> None:
        if risk_target_pct <= 0 or risk_target_pct >= 1:
            raise ValidationError("risk_target_pct must be between 0 and 1")
        self.prices = prices
        self.risk_target_pct = risk_target_pct
        self.atr_period = atr_period
        self.fallback_volatility_pct = fallback_volatility_pct

    def size(self, signals: Sequence[TradeSignal], allocated_equity: float) -> SizingResult:
        scores = {symbol: score for symbol, score in net_scores(signals).items() if score != 0}
        if not scores or allocated_equity <= 0:
            return SizingResult()
        source = signals[0].source_strategy
        strengths = _normalized_strengths(scores)
        frames = self.prices.histories(list(scores))
        risk_amount = allocated_equity * self.risk_target_pct

        positions: list[TargetPosition] = []
        skipped: dict[str, BlockReason] = {}
        for symbol, score in scores.items():
            frame = frames.get(symbol, _empty_frame())
            price = self.prices.latest_price(symbol, frame)
            if price is None:
                logger.warning("%s: no price data, skipping", symbol)
                skipped[symbol] = BlockReason.NO_PRICE_DATA
                continue

            atr = average_true_range(frame, self.atr_period)
            atr_fallback = atr is None
            if atr is None:
                atr = price * self.fallback_volatility_pct
                logger.info(
                    "%s: insufficient history for ATR, using %.0f%% of price",
                    symbol,
                    self.fallback_volatility_pct * 100,
                )

            base_shares = math.floor(risk_amount / atr)
            shares = math.floor(base_shares * strengths[symbol])
            if shares <= 0:
                logger.debug("%s: risk unit rounds to zero shares", symbol)
                continue

            value = shares * price
            positions.append(
                TargetPosition(
                    symbol=symbol,
                    target_value=value if score > 0 else -value,
                    details=PositionDetails(
                        source=source,
                        net_score=score,
                        atr=atr,
                        atr_fallback=atr_fallback,
                        shares=shares,
                        risk_target_pct=self.risk_target_pct,
                        implied_stop=atr * STOP_ATR_MULTIPLIER,
                    ),
                )
            )
        return SizingResult(positions=positions, skipped=skipped)


def _normalized_strengths(scores: Mapping[str, float]) -> dict[str, float]:
    """Absolute strengths scaled into (0, 1]; already-bounded scores pass through."""
    peak = max(abs(score) for score in scores.values())
    divisor = peak if peak > 1.0 else 1.0
    return {symbol: abs(score) / divisor for symbol, score in scores.items()}


def _empty_frame() -> pd.DataFrame:
    return pd.DataFrame(columns=["open", "high", "low", "close", "volume"])
