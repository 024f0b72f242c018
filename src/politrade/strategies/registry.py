"""Static strategy registry: name to executable strategy plus allocation metadata."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from politrade.domain.models import RebalanceFrequency
from politrade.errors import UnknownStrategyError, ValidationError
from politrade.strategies.base import SignalStrategy, StrategyContext, StrategyResult
from politrade.strategies.congressional import CongressionalStrategy
from politrade.strategies.insider import InsiderStrategy
from politrade.strategies.lobbying import LobbyingStrategy

logger = logging.getLogger("politrade.strategies.registry")


class StrategyName(StrEnum):
    CONGRESSIONAL = "congressional"
    LOBBYING = "lobbying"
    INSIDER = "insider"


@dataclass(frozen=True)
class StrategyAllocation:
    """Static configuration of one registered strategy."""

    name: StrategyName
    factory: type[SignalStrategy]
    default_weight: float
    rebalance_frequency: RebalanceFrequency
    description: str

    @property
    def params(self) -> tuple[str, ...]:
        return self.factory.accepted_params

    def to_record(self) -> dict[str, Any]:
        return {
            "name": self.name.value,
            "description": self.description,
            "default_weight": self.default_weight,
            "rebalance_frequency": self.rebalance_frequency.value,
            "params": list(self.params),
        }


STRATEGIES: dict[StrategyName, StrategyAllocation] = {
    StrategyName.CONGRESSIONAL: StrategyAllocation(
        name=StrategyName.CONGRESSIONAL,
        factory=CongressionalStrategy,
        default_weight=0.50,
        rebalance_frequency=RebalanceFrequency.DAILY,
        description="Congressional trading signals filtered by politician quality score",
    ),
    StrategyName.LOBBYING: StrategyAllocation(
        name=StrategyName.LOBBYING,
        factory=LobbyingStrategy,
        default_weight=0.30,
        rebalance_frequency=RebalanceFrequency.QUARTERLY,
        description="Corporate lobbying influence factor, market-neutral long/short",
    ),
    StrategyName.INSIDER: StrategyAllocation(
        name=StrategyName.INSIDER,
        factory=InsiderStrategy,
        default_weight=0.20,
        rebalance_frequency=RebalanceFrequency.DAILY,
        description="Corporate insider purchase mimicry",
    ),
}


def normalize_strategy_name(value: str | StrategyName) -> StrategyName:
    """Resolve a name or raise; unknown names never fall back to a default."""
    if isinstance(value, StrategyName):
        return value
    candidate = str(value).strip().lower().replace("-", "_")
    try:
        return StrategyName(candidate)
    except ValueError as exc:
        available = ", ".join(name.value for name in StrategyName)
        raise UnknownStrategyError(
            f"Unknown strategy: {value}. Available: {available}"
        ) from exc


class StrategyRegistry:
    """Lookup and dispatch only; strategies hold the business logic."""

    def __init__(
        self,
        context: StrategyContext,
        allocations: Mapping[StrategyName, StrategyAllocation] | None = None,
    ) -> None:
        self.context = context
        self.allocations = dict(allocations if allocations is not None else STRATEGIES)

    def get(self, name: str | StrategyName) -> StrategyAllocation:
        resolved = normalize_strategy_name(name)
        allocation = self.allocations.get(resolved)
        if allocation is None:
            raise UnknownStrategyError(f"Strategy not registered: {resolved.value}")
        return allocation

    def is_registered(self, name: str | StrategyName) -> bool:
        try:
            self.get(name)
        except UnknownStrategyError:
            return False
        return True

    def list_available(self) -> list[dict[str, Any]]:
        return [allocation.to_record() for allocation in self.allocations.values()]

    def default_weight(self, name: str | StrategyName) -> float:
        return self.get(name).default_weight

    def default_weights(self) -> dict[str, float]:
        return {name.value: item.default_weight for name, item in self.allocations.items()}

    def validate_params(self, name: str | StrategyName, params: Mapping[str, Any]) -> None:
        allocation = self.get(name)
        unknown = sorted(set(params) - set(allocation.params))
        if "total_equity" in params:
            unknown.append("total_equity (set from allocated equity)")
        if unknown:
            raise ValidationError(
                f"{allocation.name.value}: unsupported parameters {', '.join(unknown)}"
            )

    def build(
        self,
        name: str | StrategyName,
        allocated_equity: float,
        params: Mapping[str, Any] | None = None,
    ) -> StrategyResult:
        allocation = self.get(name)
        strategy_params = dict(params or {})
        self.validate_params(allocation.name, strategy_params)
        strategy_params["total_equity"] = allocated_equity
        logger.info(
            "Building %s strategy with equity: $%.2f",
            allocation.name.value,
            allocated_equity,
        )
        strategy = allocation.factory(self.context, **strategy_params)
        return strategy.run()
