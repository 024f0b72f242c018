"""Collapse per-strategy positions into one capped position per symbol."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from politrade.domain.models import MergeStrategy, PositionDetails, TargetPosition
from politrade.errors import ValidationError

logger = logging.getLogger("politrade.portfolio.merger")

DROP_ALERT_FRACTION = 0.5


@dataclass(frozen=True)
class MergeStats:
    """Counts from the last merge, kept for blend metadata."""

    input_count: int = 0
    merged_count: int = 0
    filtered_count: int = 0
    capped_symbols: tuple[str, ...] = ()

    @property
    def filtered_fraction(self) -> float:
        if self.merged_count == 0:
            return 0.0
        return self.filtered_count / self.merged_count


class PositionMerger:
    """Groups positions by symbol, combines, caps, then filters small ones."""

    def __init__(
        self,
        merge_strategy: MergeStrategy = MergeStrategy.ADDITIVE,
        max_position_pct: float = 0.15,
        min_position_value: float = 1000.0,
    ) -> None:
        if not isinstance(merge_strategy, MergeStrategy):
            raise ValidationError(f"Invalid merge strategy: {merge_strategy!r}")
        if max_position_pct <= 0 or max_position_pct > 1:
            raise ValidationError("max_position_pct must be between 0 and 1")
        if min_position_value < 0:
            raise ValidationError("min_position_value must be non-negative")
        self.merge_strategy = merge_strategy
        self.max_position_pct = max_position_pct
        self.min_position_value = min_position_value
        self.last_stats = MergeStats()

    def merge(self, positions: Sequence[TargetPosition], total_equity: float) -> list[TargetPosition]:
        if total_equity <= 0:
            raise ValidationError("total_equity must be positive")
        groups: dict[str, list[TargetPosition]] = {}
        for position in positions:
            groups.setdefault(position.symbol, []).append(position)

        max_value = total_equity * self.max_position_pct
        merged = [self._merge_group(symbol, group, max_value) for symbol, group in groups.items()]
        kept = [item for item in merged if abs(item.target_value) >= self.min_position_value]

        self.last_stats = MergeStats(
            input_count=len(positions),
            merged_count=len(merged),
            filtered_count=len(merged) - len(kept),
            capped_symbols=tuple(item.symbol for item in merged if item.details.was_capped),
        )
        self._report_filtering(self.last_stats)
        return kept

    def combine(self, values: Sequence[float]) -> float:
        """Apply the configured rule to one symbol's values.

        ``max`` returns the first value of the largest magnitude, so its result
        depends on input order only when a long and a short tie exactly.
        """
        if not values:
            return 0.0
        if self.merge_strategy is MergeStrategy.ADDITIVE:
            return math.fsum(values)
        if self.merge_strategy is MergeStrategy.AVERAGE:
            return math.fsum(values) / len(values)
        # max keeps the first of several equal magnitudes.
        return max(values, key=abs)

    def _merge_group(
        self,
        symbol: str,
        group: list[TargetPosition],
        max_value: float,
    ) -> TargetPosition:
        values = [position.target_value for position in group]
        combined = self.combine(values)
        capped = abs(combined) > max_value
        final_value = math.copysign(max_value, combined) if capped else combined
        if capped:
            logger.info(
                "%s: capped from $%.2f to $%.2f (%.1f%% of equity)",
                symbol,
                combined,
                final_value,
                self.max_position_pct * 100,
            )

        sources = tuple(dict.fromkeys(_source_name(position) for position in group))
        first = group[0]
        details = PositionDetails(
            source=sources[0] if len(sources) == 1 else None,
            sources=sources,
            consensus_count=len(group),
            original_values=tuple(values),
            pre_cap_value=combined,
            was_capped=capped,
            merge_strategy=self.merge_strategy,
            net_score=first.details.net_score if len(group) == 1 else None,
            atr=first.details.atr if len(group) == 1 else None,
            atr_fallback=first.details.atr_fallback if len(group) == 1 else False,
            shares=first.details.shares if len(group) == 1 and not capped else None,
            risk_target_pct=first.details.risk_target_pct if len(group) == 1 else None,
            implied_stop=first.details.implied_stop if len(group) == 1 else None,
        )
        return TargetPosition(
            symbol=symbol,
            target_value=final_value,
            asset_type=first.asset_type,
            details=details,
        )

    def _report_filtering(self, stats: MergeStats) -> None:
        if stats.merged_count == 0:
            return
        logger.info(
            "Minimum value filter ($%.2f) dropped %s of %s positions (%.1f%%)",
            self.min_position_value,
            stats.filtered_count,
            stats.merged_count,
            stats.filtered_fraction * 100,
        )
        if stats.filtered_fraction > DROP_ALERT_FRACTION:
            logger.error(
                "Minimum value filter dropped %.1f%% of positions; check sizing and "
                "min_position_value configuration",
                stats.filtered_fraction * 100,
            )


def _source_name(position: TargetPosition) -> str:
    details = position.details
    if details.source:
        return details.source
    if details.sources:
        return details.sources[0]
    return "unknown"
