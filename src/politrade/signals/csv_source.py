"""CSV-backed signal source: one normalized file per strategy."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pandas as pd

from politrade.domain.models import SignalDirection, TradeSignal
from politrade.errors import StrategyError

logger = logging.getLogger("politrade.signals.csv")

_DIRECTION_ALIASES = {
    "buy": SignalDirection.BUY,
    "purchase": SignalDirection.BUY,
    "long": SignalDirection.BUY,
    "sell": SignalDirection.SELL,
    "sale": SignalDirection.SELL,
    "short": SignalDirection.SELL,
}


class CsvSignalSource:
    """Load signals from ``<signals_dir>/<strategy>.csv``.

    Required columns: symbol, direction, strength. Optional: a date column,
    ``provenance`` and ``quarter``. Symbols are passed through untouched so
    strategies can drop invalid tickers.
    """

    date_column_candidates = ("observed_at", "date", "datetime", "timestamp")

    def __init__(
        self,
        signals_dir: str | Path,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.signals_dir = Path(signals_dir)
        self.clock = clock or (lambda: datetime.now(tz=UTC))

    def path_for(self, strategy: str) -> Path:
        return self.signals_dir / f"{strategy}.csv"

    def fetch_signals(self, strategy: str, params: Mapping[str, Any]) -> list[TradeSignal]:
        path = self.path_for(strategy)
        if not path.exists():
            raise StrategyError(f"No signal file for {strategy} at {path}")
        frame = pd.read_csv(path, dtype={"symbol": str})
        frame.columns = [str(column).strip().lower() for column in frame.columns]
        missing = {"symbol", "direction", "strength"} - set(frame.columns)
        if missing:
            raise StrategyError(f"{path}: missing required columns {', '.join(sorted(missing))}")

        date_column = next((c for c in self.date_column_candidates if c in frame.columns), None)
        if date_column is not None:
            frame["_observed_at"] = pd.to_datetime(frame[date_column], utc=True, errors="coerce")
            lookback_days = params.get("lookback_days")
            if lookback_days:
                cutoff = pd.Timestamp(self.clock() - timedelta(days=int(lookback_days)))
                frame = frame[frame["_observed_at"] >= cutoff]
        quarter = params.get("quarter")
        if quarter and "quarter" in frame.columns:
            frame = frame[frame["quarter"].astype(str).str.strip() == str(quarter)]

        signals: list[TradeSignal] = []
        for row in frame.to_dict(orient="records"):
            signal = self._row_to_signal(strategy, row, path)
            if signal is not None:
                signals.append(signal)
        logger.info("%s: loaded %s signals from %s", strategy, len(signals), path)
        return signals

    def _row_to_signal(
        self,
        strategy: str,
        row: Mapping[str, Any],
        path: Path,
    ) -> TradeSignal | None:
        raw_direction = str(row.get("direction", "")).strip().lower()
        direction = _DIRECTION_ALIASES.get(raw_direction)
        if direction is None:
            logger.warning("%s: skipping row with unknown direction %r", path, raw_direction)
            return None
        try:
            strength = float(row.get("strength"))
        except (TypeError, ValueError):
            logger.warning("%s: skipping row with non-numeric strength", path)
            return None
        if pd.isna(strength):
            logger.warning("%s: skipping row with empty strength", path)
            return None

        symbol = row.get("symbol")
        observed = row.get("_observed_at")
        provenance = row.get("provenance")
        return TradeSignal(
            symbol="" if symbol is None or pd.isna(symbol) else str(symbol),
            direction=direction,
            strength=strength,
            source_strategy=strategy,
            observed_at=observed.to_pydatetime() if isinstance(observed, pd.Timestamp) else self.clock(),
            provenance=() if provenance is None or pd.isna(provenance) else (str(provenance),),
        )
