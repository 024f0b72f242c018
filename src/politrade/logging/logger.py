"""Concise human-readable run logger."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any


class HumanLogger:
    """Console logger with fixed line types."""

    def __init__(self, level: str = "INFO") -> None:
        self._logger = logging.getLogger("politrade")
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self._logger.propagate = False
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s | %(message)s", "%Y-%m-%d %H:%M:%S")
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)

    def run_started(self, run_id: str, mode: str, strategies: Mapping[str, float]) -> None:
        weights = ", ".join(f"{name}={weight:.2f}" for name, weight in strategies.items())
        self._logger.info("run | %s | mode %s | weights %s", run_id, mode.upper(), weights)

    def portfolio(self, cash: float, equity: float, buying_power: float) -> None:
        self._logger.info(
            "portfolio | cash $%s | equity $%s | buying_power $%s",
            f"{cash:,.2f}",
            f"{equity:,.2f}",
            f"{buying_power:,.2f}",
        )

    def blend_summary(self, metadata: Mapping[str, Any]) -> None:
        self._logger.info(
            "blend | %s positions (%s long, %s short) | gross $%s (%s) | net $%s (%s) "
            "| strategies ok %s failed %s",
            metadata.get("total_positions", 0),
            metadata.get("long_positions", 0),
            metadata.get("short_positions", 0),
            f"{self._as_float(metadata.get('gross_exposure')) or 0.0:,.2f}",
            self._format_pct(metadata.get("gross_exposure_pct")),
            f"{self._as_float(metadata.get('net_exposure')) or 0.0:,.2f}",
            self._format_pct(metadata.get("net_exposure_pct")),
            metadata.get("strategies_succeeded", 0),
            metadata.get("strategies_failed", 0),
        )
        for name, error in dict(metadata.get("failed_strategies") or {}).items():
            self._logger.warning("strategy | %s | failed | %s", name, error)
        capped = metadata.get("capped_symbols") or []
        if capped:
            self._logger.info("blend | capped %s", ", ".join(capped))

    def target(self, symbol: str, target_value: float, details: Mapping[str, Any] | None = None) -> None:
        parts = [f"target | {symbol} | ${target_value:+,.2f}"]
        if details:
            sources = details.get("sources") or ([details["source"]] if details.get("source") else [])
            if sources:
                parts.append(f"from {'+'.join(sources)}")
            if details.get("was_capped"):
                pre_cap = self._as_float(details.get("pre_cap_value"))
                if pre_cap is not None:
                    parts.append(f"capped from ${pre_cap:+,.2f}")
        self._logger.info(" | ".join(parts))

    def order_submit(
        self,
        symbol: str,
        side: str,
        reason: str,
        notional: float | None = None,
        qty: float | None = None,
    ) -> None:
        if notional is not None:
            amount = f"${notional:,.2f}"
        elif qty is not None:
            amount = f"{self._format_qty(qty)} sh"
        else:
            amount = "close"
        self._logger.info("submit | %s | %s %s | %s", symbol, side, amount, reason)

    def order_update(
        self,
        symbol: str,
        status: str,
        order_id: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        parts = [f"update | {symbol} | {status}"]
        if order_id:
            parts.append(self._short_id(order_id))
        if details:
            filled_price = self._as_float(details.get("filled_avg_price"))
            if filled_price is not None:
                parts.append(f"fill ${filled_price:,.3f}")
            message = details.get("message")
            if isinstance(message, str) and message.strip():
                parts.append(message.strip())
        self._logger.info(" | ".join(parts))

    def rebalance_summary(
        self,
        executed: int,
        failed: int,
        skipped: int,
        blocked: int,
        plan_only: bool = False,
    ) -> None:
        label = "plan" if plan_only else "rebalance"
        self._logger.info(
            "%s | executed %s | failed %s | skipped %s | blocked %s",
            label,
            executed,
            failed,
            skipped,
            blocked,
        )

    def position_exposure(self, symbol: str, qty: float, market_value: float | None = None) -> None:
        qty_text = f"{qty:+.8f}".rstrip("0").rstrip(".")
        if qty_text in {"+", "-"}:
            qty_text = f"{qty:+.0f}"
        parts = [f"position | {symbol} | qty {qty_text}"]
        if market_value is not None:
            parts.append(f"value ${market_value:,.2f}")
        self._logger.info(" | ".join(parts))

    def blocked_cleanup(
        self,
        removed: int,
        remaining: list[tuple[str, str]] | None = None,
    ) -> None:
        self._logger.info("blocked | cleared %s expired", removed)
        for symbol, reason in remaining or []:
            self._logger.info("blocked | %s | %s", symbol, reason)

    def error(self, message: str) -> None:
        self._logger.error("error | %s", message)

    @staticmethod
    def _short_id(value: str | None, head: int = 10, tail: int = 6) -> str:
        if not value:
            return ""
        text = str(value)
        if len(text) <= head + tail + 1:
            return text
        return f"{text[:head]}...{text[-tail:]}"

    @staticmethod
    def _as_float(value: Any) -> float | None:
        if value is None:
            return None
        if isinstance(value, (int, float)):
            return float(value)
        text = str(value).strip()
        if not text:
            return None
        try:
            return float(text)
        except ValueError:
            return None

    @classmethod
    def _format_pct(cls, value: Any) -> str:
        parsed = cls._as_float(value)
        if parsed is None:
            return "n/a"
        return f"{parsed * 100:.1f}%"

    @staticmethod
    def _format_qty(value: float, precision: int = 8) -> str:
        normalized = 0.0 if abs(float(value)) < 1e-9 else float(value)
        text = f"{normalized:.{precision}f}".rstrip("0").rstrip(".")
        if text in {"", "-0"}:
            return "0"
        return text
