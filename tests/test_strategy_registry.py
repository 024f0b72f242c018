from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from politrade.domain.models import RebalanceFrequency, TradeSignal
from politrade.errors import UnknownStrategyError, ValidationError
from politrade.strategies.base import StrategyContext
from politrade.strategies.registry import (
    STRATEGIES,
    StrategyName,
    StrategyRegistry,
    normalize_strategy_name,
)


class EmptySource:
    def fetch_signals(self, strategy: str, params: Mapping[str, Any]) -> list[TradeSignal]:
        return []


def _registry() -> StrategyRegistry:
    return StrategyRegistry(StrategyContext(source=EmptySource()))


def test_registry_lists_builtin_strategies() -> None:
    registry = _registry()

    names = [item["name"] for item in registry.list_available()]

    assert names == ["congressional", "lobbying", "insider"]
    assert sum(registry.default_weights().values()) == pytest.approx(1.0)
    assert STRATEGIES[StrategyName.LOBBYING].rebalance_frequency is RebalanceFrequency.QUARTERLY
    assert "min_quality_score" in registry.get("congressional").params


def test_normalize_strategy_name_is_strict() -> None:
    assert normalize_strategy_name(" Congressional ") is StrategyName.CONGRESSIONAL
    with pytest.raises(UnknownStrategyError, match="Available"):
        normalize_strategy_name("momentum")
    assert not _registry().is_registered("momentum")


def test_build_runs_strategy_with_allocated_equity() -> None:
    result = _registry().build("insider", allocated_equity=20_000, params={"lookback_days": 10})

    assert result.success
    assert result.name == "insider"
    assert result.positions == []


def test_build_rejects_unknown_and_reserved_params() -> None:
    registry = _registry()

    with pytest.raises(ValidationError, match="unsupported"):
        registry.build("insider", allocated_equity=20_000, params={"min_quality_score": 3})
    with pytest.raises(ValidationError, match="total_equity"):
        registry.validate_params("insider", {"total_equity": 5})
