"""Build one target portfolio from many independently-run strategies."""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from politrade.config import BlendConfig
from politrade.domain.models import BlockReason, MergeStrategy, TargetPosition
from politrade.errors import ValidationError
from politrade.portfolio.merger import PositionMerger
from politrade.state.store import BlockedAssetStore
from politrade.strategies.base import StrategyResult
from politrade.strategies.registry import StrategyRegistry, normalize_strategy_name

logger = logging.getLogger("politrade.portfolio.blender")

WEIGHT_SUM_TOLERANCE = 0.01


@dataclass(frozen=True)
class PortfolioMetadata:
    """Exposure and bookkeeping summary of a blended portfolio."""

    total_equity: float
    merge_strategy: MergeStrategy
    weight_sum: float
    total_positions: int = 0
    long_positions: int = 0
    short_positions: int = 0
    long_exposure: float = 0.0
    short_exposure: float = 0.0
    gross_exposure: float = 0.0
    net_exposure: float = 0.0
    gross_exposure_pct: float = 0.0
    net_exposure_pct: float = 0.0
    strategy_contributions: dict[str, int] = field(default_factory=dict)
    capped_symbols: tuple[str, ...] = ()
    strategies_succeeded: int = 0
    strategies_failed: int = 0
    failed_strategies: dict[str, str] = field(default_factory=dict)
    filtered_below_minimum: int = 0
    shorts_removed: int = 0
    blocked_removed: tuple[str, ...] = ()

    def to_record(self) -> dict[str, Any]:
        return {
            "total_equity": round(self.total_equity, 2),
            "merge_strategy": self.merge_strategy.value,
            "weight_sum": self.weight_sum,
            "total_positions": self.total_positions,
            "long_positions": self.long_positions,
            "short_positions": self.short_positions,
            "long_exposure": round(self.long_exposure, 2),
            "short_exposure": round(self.short_exposure, 2),
            "gross_exposure": round(self.gross_exposure, 2),
            "net_exposure": round(self.net_exposure, 2),
            "gross_exposure_pct": self.gross_exposure_pct,
            "net_exposure_pct": self.net_exposure_pct,
            "strategy_contributions": dict(self.strategy_contributions),
            "capped_symbols": list(self.capped_symbols),
            "strategies_succeeded": self.strategies_succeeded,
            "strategies_failed": self.strategies_failed,
            "failed_strategies": dict(self.failed_strategies),
            "filtered_below_minimum": self.filtered_below_minimum,
            "shorts_removed": self.shorts_removed,
            "blocked_removed": list(self.blocked_removed),
        }


@dataclass(frozen=True)
class BlendResult:
    target_positions: list[TargetPosition]
    metadata: PortfolioMetadata
    strategy_results: dict[str, StrategyResult] = field(default_factory=dict)
    newly_blocked: dict[str, BlockReason] = field(default_factory=dict)
    # Every symbol untradeable this cycle; held positions in them are left alone.
    blocked_symbols: frozenset[str] = frozenset()


class PortfolioBlender:
    """Runs every weighted strategy, merges, then applies risk controls."""

    def __init__(
        self,
        registry: StrategyRegistry,
        blocked_assets: BlockedAssetStore | None = None,
    ) -> None:
        self.registry = registry
        self.blocked_assets = blocked_assets

    def blend(self, config: BlendConfig) -> BlendResult:
        config = config.validate()
        weights = self._resolve_weights(config)
        weight_sum = math.fsum(weights.values())
        if abs(weight_sum - 1.0) >= WEIGHT_SUM_TOLERANCE:
            logger.warning("Strategy weights sum to %.4f, not 1.0", weight_sum)

        collected: list[TargetPosition] = []
        results: dict[str, StrategyResult] = {}
        newly_blocked: dict[str, BlockReason] = {}
        for name, weight in weights.items():
            if weight <= 0:
                logger.info("Skipping %s: weight is %s", name, weight)
                continue
            allocated_equity = config.total_equity * weight
            result = self._run_strategy(name, allocated_equity, self._params_for(config, name))
            results[name] = result
            if not result.success:
                continue
            collected.extend(position.with_details(source=name) for position in result.positions)
            for symbol, reason in result.skipped.items():
                newly_blocked.setdefault(symbol, reason)

        if self.blocked_assets is not None:
            for symbol, reason in newly_blocked.items():
                self.blocked_assets.block(symbol, reason)
                logger.warning("%s: blocked for cooldown (%s)", symbol, reason.value)

        merger = PositionMerger(
            merge_strategy=config.merge_strategy,
            max_position_pct=config.max_position_pct,
            min_position_value=config.min_position_value,
        )
        merged = merger.merge(collected, config.total_equity)

        blocked = frozenset(newly_blocked)
        if self.blocked_assets is not None:
            blocked |= self.blocked_assets.blocked_symbols()
        final, shorts_removed, blocked_removed = self._apply_risk_controls(merged, config, blocked)
        metadata = self._build_metadata(
            final,
            config=config,
            weight_sum=weight_sum,
            results=results,
            collected=collected,
            capped_symbols=tuple(
                symbol for symbol in merger.last_stats.capped_symbols
                if any(position.symbol == symbol for position in final)
            ),
            filtered_below_minimum=merger.last_stats.filtered_count,
            shorts_removed=shorts_removed,
            blocked_removed=blocked_removed,
        )
        logger.info(
            "Blended %s positions from %s strategies (%s failed): gross $%.2f, net $%.2f",
            metadata.total_positions,
            metadata.strategies_succeeded,
            metadata.strategies_failed,
            metadata.gross_exposure,
            metadata.net_exposure,
        )
        return BlendResult(
            target_positions=final,
            metadata=metadata,
            strategy_results=results,
            newly_blocked=newly_blocked,
            blocked_symbols=blocked,
        )

    def _resolve_weights(self, config: BlendConfig) -> dict[str, float]:
        """Resolve every name before any strategy runs; unknown names are fatal."""
        if not config.strategy_weights:
            raise ValidationError("strategy_weights cannot be empty")
        weights: dict[str, float] = {}
        for raw_name, weight in config.strategy_weights.items():
            allocation = self.registry.get(raw_name)
            weights[allocation.name.value] = float(weight)
        for raw_name, params in config.strategy_params.items():
            self.registry.validate_params(raw_name, params)
        return weights

    @staticmethod
    def _params_for(config: BlendConfig, name: str) -> dict[str, Any]:
        for raw_name, params in config.strategy_params.items():
            if normalize_strategy_name(raw_name).value == name:
                return dict(params)
        return {}

    def _run_strategy(
        self,
        name: str,
        allocated_equity: float,
        params: dict[str, Any],
    ) -> StrategyResult:
        try:
            result = self.registry.build(name, allocated_equity, params)
        except Exception as exc:
            logger.error("Strategy %s failed: %s", name, exc)
            return StrategyResult.failed(name, f"{type(exc).__name__}: {exc}")
        if not result.success:
            logger.error("Strategy %s reported failure: %s", name, result.error)
        return result

    def _apply_risk_controls(
        self,
        positions: list[TargetPosition],
        config: BlendConfig,
        blocked: frozenset[str],
    ) -> tuple[list[TargetPosition], int, tuple[str, ...]]:
        kept = positions
        shorts_removed = 0
        if not config.enable_shorts:
            kept = [position for position in positions if not position.is_short]
            shorts_removed = len(positions) - len(kept)
            if shorts_removed:
                logger.info("Shorts disabled: removed %s short positions", shorts_removed)

        blocked_removed = tuple(p.symbol for p in kept if p.symbol in blocked)
        if blocked_removed:
            logger.info("Removed blocked symbols: %s", ", ".join(blocked_removed))
            kept = [position for position in kept if position.symbol not in blocked]
        return kept, shorts_removed, blocked_removed

    @staticmethod
    def _build_metadata(
        positions: list[TargetPosition],
        config: BlendConfig,
        weight_sum: float,
        results: dict[str, StrategyResult],
        collected: list[TargetPosition],
        capped_symbols: tuple[str, ...],
        filtered_below_minimum: int,
        shorts_removed: int,
        blocked_removed: tuple[str, ...],
    ) -> PortfolioMetadata:
        long_exposure = math.fsum(p.target_value for p in positions if p.is_long)
        short_exposure = math.fsum(p.target_value for p in positions if p.is_short)
        gross = long_exposure + abs(short_exposure)
        net = long_exposure + short_exposure
        contributions = Counter(position.details.source or "unknown" for position in collected)
        failed = {name: result.error or "unknown error" for name, result in results.items()
                  if not result.success}
        return PortfolioMetadata(
            total_equity=config.total_equity,
            merge_strategy=config.merge_strategy,
            weight_sum=weight_sum,
            total_positions=len(positions),
            long_positions=sum(1 for p in positions if p.is_long),
            short_positions=sum(1 for p in positions if p.is_short),
            long_exposure=long_exposure,
            short_exposure=short_exposure,
            gross_exposure=gross,
            net_exposure=net,
            gross_exposure_pct=gross / config.total_equity,
            net_exposure_pct=net / config.total_equity,
            strategy_contributions=dict(contributions),
            capped_symbols=capped_symbols,
            strategies_succeeded=len(results) - len(failed),
            strategies_failed=len(failed),
            failed_strategies=failed,
            filtered_below_minimum=filtered_below_minimum,
            shorts_removed=shorts_removed,
            blocked_removed=blocked_removed,
        )
