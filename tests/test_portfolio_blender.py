"""Tests for multi-strategy blending."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

import pandas as pd
import pytest

from politrade.config import BlendConfig
from politrade.domain.models import BlockReason, SignalDirection, TradeSignal
from politrade.errors import StrategyError, UnknownStrategyError, ValidationError
from politrade.execution.sizing import PriceHistoryProvider
from politrade.portfolio.blender import PortfolioBlender
from politrade.state.store import InMemoryBlockedAssetStore
from politrade.strategies.base import StrategyContext
from politrade.strategies.registry import StrategyRegistry


class StubSource:
    def __init__(self, signals: dict[str, list[tuple[str, str, float]]], failing: set[str] | None = None) -> None:
        self.signals = signals
        self.failing = failing or set()
        self.calls: list[str] = []

    def fetch_signals(self, strategy: str, params: Mapping[str, Any]) -> list[TradeSignal]:
        self.calls.append(strategy)
        if strategy in self.failing:
            raise StrategyError(f"{strategy} feed unavailable")
        return [
            TradeSignal(
                symbol=symbol,
                direction=SignalDirection(direction),
                strength=strength,
                source_strategy=strategy,
            )
            for symbol, direction, strength in self.signals.get(strategy, [])
        ]


class NoPrices:
    def get_latest_trade_price(self, symbol: str) -> float | None:
        return None

    def get_price_history(
        self, symbol: str, start: datetime, end: datetime, timeframe: str = "1Day"
    ) -> pd.DataFrame:
        return pd.DataFrame(columns=["open", "high", "low", "close", "volume"])

    def get_price_histories(
        self, symbols: list[str], start: datetime, end: datetime, timeframe: str = "1Day"
    ) -> dict[str, pd.DataFrame]:
        return {}


SIGNALS = {
    "congressional": [("AAPL", "buy", 6.0), ("MSFT", "buy", 6.0)],
    "insider": [("AAPL", "buy", 50_000.0), ("NVDA", "buy", 50_000.0)],
    "lobbying": [("AAPL", "buy", 1.0), ("XOM", "sell", 1.0)],
}


def _blender(source: StubSource, store: InMemoryBlockedAssetStore | None = None) -> PortfolioBlender:
    return PortfolioBlender(StrategyRegistry(StrategyContext(source=source)), blocked_assets=store)


def test_blend_merges_consensus_positions() -> None:
    blender = _blender(StubSource(SIGNALS))
    config = BlendConfig(
        total_equity=100_000,
        strategy_weights={"congressional": 0.5, "insider": 0.5},
        max_position_pct=0.5,
    )

    result = blender.blend(config)

    targets = {p.symbol: p for p in result.target_positions}
    assert targets["AAPL"].target_value == pytest.approx(50_000)
    assert targets["AAPL"].details.sources == ("congressional", "insider")
    assert targets["AAPL"].details.consensus_count == 2
    assert targets["MSFT"].target_value == pytest.approx(25_000)
    assert targets["NVDA"].target_value == pytest.approx(25_000)
    assert result.metadata.strategy_contributions == {"congressional": 2, "insider": 2}
    assert result.metadata.gross_exposure == pytest.approx(100_000)
    assert result.metadata.strategies_failed == 0


def test_blend_survives_single_strategy_failure() -> None:
    blender = _blender(StubSource(SIGNALS, failing={"lobbying"}))
    config = BlendConfig(
        total_equity=100_000,
        strategy_weights={"congressional": 0.5, "lobbying": 0.3, "insider": 0.2},
        max_position_pct=0.5,
    )

    result = blender.blend(config)

    assert result.metadata.strategies_failed == 1
    assert result.metadata.strategies_succeeded == 2
    assert "lobbying" in result.metadata.failed_strategies
    assert not result.strategy_results["lobbying"].success
    assert {p.symbol for p in result.target_positions} == {"AAPL", "MSFT", "NVDA"}


def test_unknown_strategy_fails_before_any_strategy_runs() -> None:
    source = StubSource(SIGNALS)
    blender = _blender(source)
    config = BlendConfig(
        total_equity=100_000,
        strategy_weights={"congressional": 0.5, "astrology": 0.5},
    )

    with pytest.raises(UnknownStrategyError):
        blender.blend(config)
    assert source.calls == []


def test_empty_weights_and_bad_equity_are_rejected() -> None:
    blender = _blender(StubSource(SIGNALS))

    with pytest.raises(ValidationError):
        blender.blend(BlendConfig(total_equity=100_000, strategy_weights={}))
    with pytest.raises(ValidationError):
        blender.blend(BlendConfig(total_equity=0, strategy_weights={"insider": 1.0}))


def test_zero_weight_strategy_is_not_run() -> None:
    source = StubSource(SIGNALS)
    config = BlendConfig(
        total_equity=100_000,
        strategy_weights={"congressional": 1.0, "insider": 0.0},
        max_position_pct=0.5,
    )

    _blender(source).blend(config)

    assert source.calls == ["congressional"]


def test_shorts_disabled_removes_short_positions() -> None:
    config = BlendConfig(
        total_equity=100_000,
        strategy_weights={"lobbying": 1.0},
        max_position_pct=0.5,
        enable_shorts=False,
    )

    result = _blender(StubSource(SIGNALS)).blend(config)

    assert [p.symbol for p in result.target_positions] == ["AAPL"]
    assert result.metadata.shorts_removed == 1
    assert result.metadata.short_exposure == 0


def test_blocked_symbols_are_removed_from_targets() -> None:
    store = InMemoryBlockedAssetStore()
    store.block("AAPL", BlockReason.NOT_FRACTIONABLE)
    config = BlendConfig(
        total_equity=100_000,
        strategy_weights={"congressional": 1.0},
        max_position_pct=0.5,
    )

    result = _blender(StubSource(SIGNALS), store).blend(config)

    assert [p.symbol for p in result.target_positions] == ["MSFT"]
    assert result.metadata.blocked_removed == ("AAPL",)
    assert result.blocked_symbols == {"AAPL"}


def test_unpriced_symbols_are_blocked_during_blend() -> None:
    store = InMemoryBlockedAssetStore()
    context = StrategyContext(
        source=StubSource(SIGNALS),
        prices=PriceHistoryProvider(NoPrices()),
        sizing_method="volatility",
    )
    blender = PortfolioBlender(StrategyRegistry(context), blocked_assets=store)

    result = blender.blend(
        BlendConfig(total_equity=100_000, strategy_weights={"congressional": 1.0})
    )

    assert result.target_positions == []
    assert result.newly_blocked == {
        "AAPL": BlockReason.NO_PRICE_DATA,
        "MSFT": BlockReason.NO_PRICE_DATA,
    }
    assert store.blocked_symbols() == {"AAPL", "MSFT"}
    assert result.blocked_symbols == {"AAPL", "MSFT"}
